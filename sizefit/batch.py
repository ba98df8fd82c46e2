from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from .codec import PdfContainer, PillowCodec
from .decoder import PendingPage, SampledDecoder
from .errors import DecodeError, EncodeError, PersistError
from .pages import plan_page_budgets, process_page_for_container
from .results import OutputArtifact, SourceImage
from .search import fit_to_budget, get_strategy
from .settings import CompressSettings, normalize_format
from .sink import ArtifactSink, DirectorySink
from .units import format_size


log = logging.getLogger(__name__)

SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tif", ".tiff", ".pdf"}

# Share of the progress bar spent probing inputs.
LOAD_PHASE = 0.10

ProgressCallback = Callable[[float, str], None]


class SourceInput(NamedTuple):
    name: str  # file name without extension
    data: bytes


@dataclass(frozen=True)
class BatchSummary:
    total_inputs: int
    artifacts: int
    best_effort: int
    total_src_bytes: int
    total_out_bytes: int

    @property
    def saved_bytes(self) -> int:
        return max(0, self.total_src_bytes - self.total_out_bytes)

    @property
    def saved_percent(self) -> float:
        if self.total_src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.total_src_bytes) * 100.0


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def iter_sources(
    paths: Sequence[Path],
    recursive: bool = True,
    exclude_dir: Optional[Path] = None,
) -> Iterable[Path]:
    """
    Yield supported image and PDF paths from a mixture of files and directories.

    exclude_dir:
        If provided, any files inside this directory will be skipped.
        (Prevents re-processing output files when output_dir is inside input_dir.)
    """
    exclude_resolved = exclude_dir.resolve() if exclude_dir else None

    for p in paths:
        p = Path(p)

        if p.is_file():
            if p.suffix.lower() in SUPPORTED_EXTS:
                if exclude_resolved and _is_relative_to(p.resolve(), exclude_resolved):
                    continue
                yield p
            continue

        if p.is_dir():
            pattern = "**/*" if recursive else "*"
            for f in sorted(p.glob(pattern)):
                if not f.is_file():
                    continue
                if f.suffix.lower() not in SUPPORTED_EXTS:
                    continue

                if exclude_resolved and _is_relative_to(f.resolve(), exclude_resolved):
                    continue

                yield f


def load_inputs(paths: Iterable[Path]) -> List[SourceInput]:
    inputs: List[SourceInput] = []
    for p in paths:
        try:
            inputs.append(SourceInput(p.stem, p.read_bytes()))
        except OSError as exc:
            log.warning("skipping %s: %s", p, exc)
    return inputs


def summarize(inputs: Sequence[SourceInput], artifacts: Sequence[OutputArtifact]) -> BatchSummary:
    return BatchSummary(
        total_inputs=len(inputs),
        artifacts=len(artifacts),
        best_effort=sum(1 for a in artifacts if a.best_effort),
        total_src_bytes=sum(len(i.data) for i in inputs),
        total_out_bytes=sum(a.size_bytes for a in artifacts),
    )


class _Progress:
    """Forward progress to the caller, never letting the fraction go backwards."""

    def __init__(self, callback: Optional[ProgressCallback]) -> None:
        self.callback = callback
        self.fraction = 0.0

    def __call__(self, fraction: float, message: str) -> None:
        self.fraction = min(1.0, max(self.fraction, fraction))
        if self.callback:
            self.callback(self.fraction, message)

    def step(self, done: int, total: int, message: str) -> None:
        self(LOAD_PHASE + (done / total) * (1.0 - LOAD_PHASE), message)


def compress_and_save(
    inputs: Sequence[SourceInput],
    settings: CompressSettings,
    sink: Optional[ArtifactSink] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    codec: Optional[PillowCodec] = None,
    container: Optional[PdfContainer] = None,
) -> List[OutputArtifact]:
    """
    Compress every input to the configured size and hand results to sink.

    Raises UnsupportedFormatError before reading anything if the target
    format is not jpg or pdf. Inputs that fail to decode, encode or
    persist are skipped, so the result may hold fewer artifacts than
    there were inputs.
    """
    fmt = normalize_format(settings.target_format)

    sink = sink or DirectorySink(settings.output_dir, overwrite=settings.overwrite)
    codec = codec or PillowCodec(optimize=settings.jpeg_optimize, background=settings.jpeg_background)
    container = container or PdfContainer()
    decoder = SampledDecoder(
        max_width=settings.max_width,
        max_height=settings.max_height,
        auto_orient=settings.auto_orient,
        background=settings.jpeg_background,
        container=container,
    )
    progress = _Progress(on_progress)

    pages = _probe_all(inputs, decoder, progress)
    if not pages:
        log.warning("no decodable inputs")
        progress(1.0, "Complete")
        return []

    # Colour depth may only be sacrificed when the pixels end up in a JPEG.
    reduced_color = fmt == "jpg" and settings.high_quality_mode
    run = _Run(settings, sink, codec, container, decoder, progress, cancel_event, reduced_color)

    if fmt == "pdf":
        outputs = run.merged_pdf(pages) if settings.merge_mode else run.separate_pdfs(pages)
    else:
        outputs = run.jpegs(pages)

    progress(1.0, "Complete")
    return outputs


def _probe_all(
    inputs: Sequence[SourceInput],
    decoder: SampledDecoder,
    progress: _Progress,
) -> List[PendingPage]:
    pages: List[PendingPage] = []
    for index, item in enumerate(inputs):
        progress((index / len(inputs)) * LOAD_PHASE, f"Loading {index + 1}...")
        try:
            pages.extend(decoder.probe(item.name, item.data))
        except DecodeError as exc:
            log.warning("skipping %s: %s", item.name, exc)
    progress(LOAD_PHASE, f"Loaded {len(pages)} page(s)")
    return pages


class _Run:
    """State for one compress_and_save call: settings and collaborators."""

    def __init__(
        self,
        settings: CompressSettings,
        sink: ArtifactSink,
        codec: PillowCodec,
        container: PdfContainer,
        decoder: SampledDecoder,
        progress: _Progress,
        cancel_event: Optional[threading.Event],
        reduced_color: bool,
    ) -> None:
        self.settings = settings
        self.sink = sink
        self.codec = codec
        self.container = container
        self.decoder = decoder
        self.progress = progress
        self.cancel_event = cancel_event
        self.reduced_color = reduced_color

    @property
    def cancelled(self) -> bool:
        return bool(self.cancel_event and self.cancel_event.is_set())

    def decoded(self, pages: Sequence[PendingPage]) -> Iterator[Tuple[int, SourceImage]]:
        """
        Decode pages one at a time.

        Each SourceImage is released as soon as the consumer moves on, so
        at most one decoded page is alive per run.
        """
        for i, page in enumerate(pages):
            if self.cancelled:
                log.info("cancelled after %d of %d page(s)", i, len(pages))
                return
            try:
                source = self.decoder.load(page, reduced_color=self.reduced_color)
            except DecodeError as exc:
                log.warning("skipping %s page %d: %s", page.origin, page.page_no, exc)
                continue
            with source:
                yield i, source

    def _name(self, index: int, fallback: str) -> str:
        custom = (self.settings.custom_name or "").strip()
        return f"{custom}_{index + 1}" if custom else fallback

    def _persist(self, data: bytes, name: str, ext: str, best_effort: bool) -> Optional[OutputArtifact]:
        try:
            artifact = self.sink.persist(data, name, ext)
        except PersistError as exc:
            log.warning("could not save %s.%s: %s", name, ext, exc)
            return None
        if best_effort:
            log.warning("%s is best effort (%s)", artifact.file_name, format_size(artifact.size_bytes))
        return artifact.flagged(best_effort, ext)

    # ----- PDF -----
    def merged_pdf(self, pages: Sequence[PendingPage]) -> List[OutputArtifact]:
        s = self.settings
        page_budget = plan_page_budgets(s.target_size, len(pages), s.budget_scope, s.container)
        log.debug("merged PDF: %d page(s), %d bytes per page", len(pages), page_budget)

        flags: List[bool] = []
        doc = self.container.new_document()
        try:
            for i, source in self.decoded(pages):
                try:
                    flags.append(self._add_page(doc, source, page_budget))
                except (EncodeError, DecodeError) as exc:
                    log.warning("skipping %s page %d: %s", source.origin, source.page_no, exc)
                self.progress.step(i + 1, len(pages), f"Merging PDF {i + 1}...")

            if self.cancelled or doc.page_count == 0:
                return []
            data = self.container.serialize(doc)
        finally:
            doc.close()

        artifact = self._persist(data, s.custom_name or "merged", "pdf", any(flags))
        return [artifact] if artifact else []

    def separate_pdfs(self, pages: Sequence[PendingPage]) -> List[OutputArtifact]:
        s = self.settings
        page_budget = plan_page_budgets(s.target_size, len(pages), s.budget_scope, s.container)

        outputs: List[OutputArtifact] = []
        for i, source in self.decoded(pages):
            doc = self.container.new_document()
            try:
                self._add_page(doc, source, page_budget)
                data = self.container.serialize(doc)
            except (EncodeError, DecodeError) as exc:
                log.warning("skipping %s page %d: %s", source.origin, source.page_no, exc)
                continue
            finally:
                doc.close()
                self.progress.step(i + 1, len(pages), f"Saving PDF {i + 1}...")

            # Single-page documents are always reported as best effort.
            artifact = self._persist(data, self._name(i, f"{source.origin}_{i + 1}"), "pdf", True)
            if artifact:
                outputs.append(artifact)
        return outputs

    def _add_page(self, doc, source: SourceImage, page_budget: int) -> bool:
        result = process_page_for_container(source.image, page_budget, self.settings.container, self.codec)
        try:
            self.container.add_page(doc, result.image, doc.page_count)
        finally:
            if result.image is not source.image:
                result.image.close()
        return result.best_effort

    # ----- JPEG -----
    def jpegs(self, pages: Sequence[PendingPage]) -> List[OutputArtifact]:
        s = self.settings
        strategy = get_strategy(s.strategy_name)

        if s.target_size <= 0:
            budget = 0
        elif s.total_size_mode:
            # Never 0: that would mean "unconstrained" to the search.
            budget = max(1, s.target_size // len(pages))
        else:
            budget = s.target_size

        outputs: List[OutputArtifact] = []
        for i, source in self.decoded(pages):
            try:
                res = fit_to_budget(source.image, budget, strategy, self.codec, s.unconstrained_quality)
            except EncodeError as exc:
                log.warning("skipping %s: %s", source.origin, exc)
                continue
            finally:
                self.progress.step(i + 1, len(pages), f"Compressing {i + 1}...")

            artifact = self._persist(res.data, self._name(i, source.origin), "jpg", res.best_effort)
            if artifact:
                outputs.append(artifact)
        return outputs
