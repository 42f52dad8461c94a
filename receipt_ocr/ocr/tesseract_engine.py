"""Tesseract OCR engine wrapper for receipt text recognition.

Owns the one-time engine setup (binary lookup, language model
installation, language verification) and serialises recognition calls
so a single engine handle is never used by two threads at once.
"""

import os
import shutil
import threading
from pathlib import Path

import numpy as np
import pytesseract
from PIL import Image

from receipt_ocr.errors import InitializationError, OcrTimeoutError, RecognitionError
from receipt_ocr.ocr.timeout import Deadline
from receipt_ocr.utils.logger import get_logger

logger = get_logger(__name__)

# pytesseract reads a zero timeout as "no limit".
MIN_TESSERACT_TIMEOUT_S = 0.001


class TesseractEngine:
    """Wrapper around Tesseract for full-page receipt recognition.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Tesseract language code, ``+``-joined for several.
        psm: Tesseract page segmentation mode.
        tessdata_dir: Directory holding ``*.traineddata`` models.
            If ``None``, Tesseract's built-in location is used.
        language_asset_dir: Directory the language models are copied from
            when missing in ``tessdata_dir``.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
        psm: int = 6,
        tessdata_dir: str | None = None,
        language_asset_dir: str | None = None,
    ) -> None:
        self.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang
        self.psm = psm
        self.tessdata_dir = Path(tessdata_dir) if tessdata_dir else None
        self.language_asset_dir = Path(language_asset_dir) if language_asset_dir else None
        self._init_lock = threading.Lock()
        self._recognize_lock = threading.Lock()
        self._initialized = False
        self._version: str | None = None

    @property
    def is_initialized(self) -> bool:
        """Whether ``initialize`` has completed successfully."""
        return self._initialized

    @property
    def languages(self) -> list[str]:
        """Individual language codes the engine is configured for."""
        return [lang for lang in self.default_lang.split("+") if lang]

    def _tesseract_config(self) -> str:
        config = f"--psm {self.psm}"
        if self.tessdata_dir is not None:
            config += f' --tessdata-dir "{self.tessdata_dir}"'
        return config

    def initialize(self) -> None:
        """Prepare the engine; subsequent calls are no-ops.

        Raises:
            InitializationError: If the binary is missing, a language model
                cannot be installed, or a configured language is unavailable.
        """
        with self._init_lock:
            if self._initialized:
                return

            if self.tesseract_cmd:
                pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

            try:
                version = pytesseract.get_tesseract_version()
            except OSError as exc:
                raise InitializationError(
                    f"Tesseract binary not available: {exc}"
                ) from exc

            if self.tessdata_dir is not None:
                self._install_language_models()

            try:
                available = set(
                    pytesseract.get_languages(config=self._tesseract_config())
                )
            except (RuntimeError, OSError) as exc:
                raise InitializationError(
                    f"Could not list Tesseract languages: {exc}"
                ) from exc

            missing = [lang for lang in self.languages if lang not in available]
            if missing:
                raise InitializationError(
                    f"Language model not installed: {', '.join(missing)}"
                )

            self._version = str(version)
            self._initialized = True
            logger.info(
                "Tesseract %s initialized (lang=%s, psm=%d)",
                self._version,
                self.default_lang,
                self.psm,
            )

    def _install_language_models(self) -> None:
        self.tessdata_dir.mkdir(parents=True, exist_ok=True)
        for lang in self.languages:
            target = self.tessdata_dir / f"{lang}.traineddata"
            if target.exists():
                continue
            if self.language_asset_dir is None:
                raise InitializationError(
                    f"Language model {target.name} missing from {self.tessdata_dir} "
                    "and no asset directory configured"
                )
            asset = self.language_asset_dir / target.name
            if not asset.is_file():
                raise InitializationError(f"Language asset not found: {asset}")

            partial = target.with_name(target.name + ".partial")
            try:
                shutil.copyfile(asset, partial)
                os.replace(partial, target)
            except OSError as exc:
                partial.unlink(missing_ok=True)
                raise InitializationError(
                    f"Failed to install language model {target.name}: {exc}"
                ) from exc
            logger.info("Installed language model %s into %s", lang, self.tessdata_dir)

    def recognize(
        self,
        image: np.ndarray | Path,
        deadline: Deadline | None = None,
    ) -> str:
        """Recognise all text in an image.

        Args:
            image: Image array or path to an image file.
            deadline: Budget of the enclosing extraction call. When set,
                the Tesseract subprocess is killed once it runs out.

        Returns:
            Recognised text, possibly empty.

        Raises:
            InitializationError: If the engine has not been initialized.
            OcrTimeoutError: If the deadline expires before recognition ends.
            RecognitionError: If Tesseract fails on this image.
        """
        if not self._initialized:
            raise InitializationError("Tesseract engine is not initialized")

        if deadline is None:
            self._recognize_lock.acquire()
        else:
            deadline.check()
            if not self._recognize_lock.acquire(timeout=deadline.remaining()):
                raise OcrTimeoutError(deadline.elapsed, deadline.budget_s)

        try:
            if deadline is not None:
                deadline.check()
            source = str(image) if isinstance(image, Path) else Image.fromarray(image)
            timeout_s = 0.0
            if deadline is not None:
                timeout_s = max(deadline.remaining(), MIN_TESSERACT_TIMEOUT_S)
            try:
                text = pytesseract.image_to_string(
                    source,
                    lang=self.default_lang,
                    config=self._tesseract_config(),
                    timeout=timeout_s,
                )
            except RuntimeError as exc:
                if deadline is not None and "timeout" in str(exc).lower():
                    raise OcrTimeoutError(deadline.elapsed, deadline.budget_s) from exc
                raise RecognitionError(f"Tesseract recognition failed: {exc}") from exc
        finally:
            self._recognize_lock.release()

        logger.info("OCR recognised %d characters", len(text.strip()))
        return text

    def release(self) -> None:
        """Mark the engine as released; calling it again is harmless."""
        with self._init_lock:
            if not self._initialized:
                return
            self._initialized = False
            logger.info("Tesseract engine released")
