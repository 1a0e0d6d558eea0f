"""
Multi-Engine OCR Fusion.

Runs every available engine against the same image in parallel, bounded by
a shared per-asset timeout, and combines their outputs into one result:

    - one result: passed through unchanged
    - best confidence >= high_confidence: the best result, enriched with
      confident secondary blocks that have no counterpart in it
    - otherwise: voting merge, picking the result with the highest
      avg(block confidence) x min(1, len(text) / 1000); ties go to the
      longer text

Author: ML Engineering Team
"""

import dataclasses
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence, Union

from config import get_config
from ..utils.logger import get_logger
from ..utils.exceptions import AssetProcessingTimeout, EngineFailureError, DocScanError
from .engine import EngineRegistry, OCREngine
from .ocr_result import OCRResult

# Initialize module logger
logger = get_logger(__name__)

# Text length at which the voting score stops growing
FULL_TEXT_LENGTH = 1000


def voting_score(result: OCRResult) -> float:
    """Engine-level score used by the voting merge."""
    return result.average_block_confidence * min(1.0, len(result.text) / FULL_TEXT_LENGTH)


class OCRFusion:
    """
    Combines the outputs of several OCR engines for one asset.

    Attributes:
        timeout: Shared per-asset time budget in seconds
        high_confidence: Confidence at which the best result is trusted as is
        enrichment_floor: Minimum block confidence for enrichment
        spatial_tolerance: Pixel distance under which two blocks are the same

    Example:
        >>> fusion = OCRFusion(registry)
        >>> result = fusion.run("/tmp/asset.png")
    """

    def __init__(
        self,
        engines: Union[EngineRegistry, Callable[[], Sequence[OCREngine]]],
        timeout: Optional[float] = None,
        high_confidence: Optional[float] = None,
        enrichment_floor: Optional[float] = None,
        spatial_tolerance: Optional[float] = None
    ) -> None:
        """
        Args:
            engines: A registry, or a callable returning the engines to run.
            timeout: Per-asset timeout in seconds.
            high_confidence: Pass-through threshold.
            enrichment_floor: Block confidence floor for enrichment.
            spatial_tolerance: Block matching tolerance in pixels.
        """
        if isinstance(engines, EngineRegistry):
            self._engines = engines.available
        else:
            self._engines = engines
        self.timeout = timeout if timeout is not None else get_config("ocr.timeout_seconds", 10.0)
        self.high_confidence = (
            high_confidence if high_confidence is not None
            else get_config("ocr.high_confidence", 0.8)
        )
        self.enrichment_floor = (
            enrichment_floor if enrichment_floor is not None
            else get_config("ocr.enrichment_floor", 0.6)
        )
        self.spatial_tolerance = (
            spatial_tolerance if spatial_tolerance is not None
            else get_config("ocr.spatial_tolerance_px", 20)
        )

    def run(self, image_path: str, uri: Optional[str] = None) -> OCRResult:
        """
        Run all available engines and fuse their results.

        Engines that have not finished when the timeout expires are
        abandoned; their worker threads finish in the background.

        Args:
            image_path: Local image to recognize.
            uri: Asset URI, for error reporting.

        Returns:
            Fused OCRResult.

        Raises:
            AssetProcessingTimeout: If no engine finished in time.
            EngineFailureError: If no engine is available or all of them failed.
        """
        uri = uri or image_path
        engines = list(self._engines())
        if not engines:
            raise EngineFailureError(image_path, {"registry": "no OCR engine available"})

        executor = ThreadPoolExecutor(max_workers=len(engines), thread_name_prefix="ocr")
        try:
            futures = {executor.submit(engine.process_image, image_path): engine for engine in engines}
            done, not_done = wait(futures, timeout=self.timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        results: List[OCRResult] = []
        failures = {}
        for future in done:
            engine = futures[future]
            try:
                results.append(future.result())
            except DocScanError as e:
                failures[engine.name] = str(e)
                logger.debug(f"Engine '{engine.name}' failed on {uri}: {e}")
            except Exception as e:
                failures[engine.name] = repr(e)
                logger.warning(f"Engine '{engine.name}' raised unexpectedly on {uri}: {e!r}")
        for future in not_done:
            failures[futures[future].name] = f"timed out after {self.timeout:.1f}s"

        if not results:
            if not_done:
                raise AssetProcessingTimeout(uri, self.timeout)
            raise EngineFailureError(image_path, failures)

        if failures:
            logger.debug(f"Fusing {len(results)} of {len(engines)} engine results for {uri}")

        # Keep registration order so ties are deterministic
        order = {engine.name: i for i, engine in enumerate(engines)}
        results.sort(key=lambda r: order.get(r.engine_name, len(order)))
        return self.fuse(results)

    def fuse(self, results: List[OCRResult]) -> OCRResult:
        """
        Fuse already-computed engine results.

        Args:
            results: One result per engine, at least one.

        Returns:
            The fused result.
        """
        if not results:
            raise ValueError("fuse() needs at least one result")
        if len(results) == 1:
            return results[0]

        primary = max(results, key=lambda r: r.confidence)
        if primary.confidence >= self.high_confidence:
            secondaries = [r for r in results if r is not primary]
            return self._enrich(primary, secondaries)

        return self._voting_merge(results)

    def _enrich(self, primary: OCRResult, secondaries: List[OCRResult]) -> OCRResult:
        """
        Add confident secondary blocks that sit where the primary found nothing.

        Returns the primary object itself when there is nothing to add.
        """
        extra = []
        for result in secondaries:
            for block in result.blocks:
                if block.confidence <= self.enrichment_floor:
                    continue
                known = primary.blocks + extra
                if any(block.bbox.matches(b.bbox, self.spatial_tolerance) for b in known):
                    continue
                extra.append(block)

        if not extra:
            return primary

        logger.debug(f"Enriched {primary.engine_name} result with {len(extra)} secondary blocks")
        blocks = sorted(primary.blocks + extra, key=lambda b: (b.bbox.y, b.bbox.x))
        text = '\n'.join(b.text for b in blocks if b.text.strip())
        languages = list(dict.fromkeys(list(primary.languages) + [b.language for b in extra]))
        return dataclasses.replace(primary, text=text, blocks=blocks, languages=languages)

    @staticmethod
    def _voting_merge(results: List[OCRResult]) -> OCRResult:
        """Pick the single result with the best voting score, preferring longer text on ties."""
        best = max(results, key=lambda r: (voting_score(r), len(r.text)))
        logger.debug(
            f"Voting merge chose {best.engine_name} "
            f"(score {voting_score(best):.3f} of {len(results)} candidates)"
        )
        return best
