from __future__ import annotations

import io
import logging
from time import perf_counter

from invoice_extractor.domain.confidence import clamp_confidence, mean_confidence, text_confidence
from invoice_extractor.domain.errors import EngineUnavailable, FileUnreadable
from invoice_extractor.domain.models import OcrOutcome
from invoice_extractor.ports.ocr_port import OCRPort
from invoice_extractor.settings import OCR_DPI, OCR_LANG, OCR_OEM, OCR_PSM, OCR_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg", "image/tiff"})
MIN_PDF_DPI = 200
PAGE_SEPARATOR = "\n\n=== PAGE {page} ===\n\n"


class TesseractOCRAdapter(OCRPort):
    def __init__(
        self,
        language: str | None = None,
        dpi: int | None = None,
        psm: int | None = None,
        oem: int | None = None,
        page_timeout: float | None = None,
        enhance: bool = False,
    ) -> None:
        self._language = language or OCR_LANG
        self._dpi = max(dpi or OCR_DPI, MIN_PDF_DPI)
        self._psm = OCR_PSM if psm is None else psm
        self._oem = OCR_OEM if oem is None else oem
        self._page_timeout = OCR_TIMEOUT_SECONDS if page_timeout is None else page_timeout
        self._enhance = enhance
        self._version: str | None = None

    @property
    def engine_name(self) -> str:
        return f"Tesseract {self._engine_version()}"

    def extract_text(self, file_bytes: bytes, file_name: str, mime_type: str) -> OcrOutcome:
        if not file_bytes:
            raise FileUnreadable(f"File is empty: {file_name}", file_name=file_name)
        pytesseract = self._load_engine()
        started = perf_counter()
        if self._is_pdf(file_bytes, mime_type):
            images = self._pdf_to_images(file_bytes, file_name)
        elif (mime_type or "").lower() in IMAGE_MIME_TYPES:
            images = [self._load_image(file_bytes, file_name)]
        else:
            raise FileUnreadable(
                f"Unsupported file type: {mime_type}", file_name=file_name, mime_type=mime_type
            )
        if not images:
            raise FileUnreadable(f"Document has no pages: {file_name}", file_name=file_name)

        page_texts: list[str] = []
        page_confidences: list[float | None] = []
        for index, image in enumerate(images, start=1):
            logger.debug("OCR page %d/%d of %s", index, len(images), file_name)
            if self._enhance:
                image = self._preprocess_image(image)
            text = self._recognize(pytesseract, image, file_name)
            page_texts.append(text)
            engine_conf = self._mean_confidence(pytesseract, image)
            page_confidences.append(
                engine_conf if engine_conf is not None else text_confidence(text)
            )

        text = ""
        for index, page_text in enumerate(page_texts):
            if index:
                text += PAGE_SEPARATOR.format(page=index + 1)
            text += page_text
        confidence = clamp_confidence(mean_confidence(page_confidences))
        processing_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "OCR completed for %s (%d pages, confidence %.2f, %dms)",
            file_name,
            len(images),
            confidence,
            processing_ms,
        )
        return OcrOutcome(
            text=text,
            confidence=confidence,
            page_count=len(images),
            engine_version=self.engine_name,
            language=self._language,
            processing_ms=processing_ms,
        )

    def _load_engine(self) -> object:
        try:
            import pytesseract
        except ImportError as exc:
            raise EngineUnavailable(
                "pytesseract is required for OCR. Install with: pip install pytesseract"
            ) from exc
        return pytesseract

    def _config(self) -> str:
        return f"--oem {self._oem} --psm {self._psm} -c preserve_interword_spaces=1"

    def _recognize(self, pytesseract: object, image: object, file_name: str) -> str:
        try:
            return pytesseract.image_to_string(
                image,
                lang=self._language,
                config=self._config(),
                timeout=self._page_timeout,
            )
        except pytesseract.TesseractNotFoundError as exc:
            raise EngineUnavailable(
                "Tesseract OCR engine not found. Install tesseract-ocr and ensure it is on PATH."
            ) from exc
        except (pytesseract.TesseractError, RuntimeError) as exc:
            raise EngineUnavailable(
                f"Tesseract OCR failed for {file_name}: {exc}", file_name=file_name
            ) from exc

    def _mean_confidence(self, pytesseract: object, image: object) -> float | None:
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self._language,
                config=self._config(),
                output_type=pytesseract.Output.DICT,
                timeout=self._page_timeout,
            )
        except (pytesseract.TesseractError, RuntimeError) as exc:
            logger.debug("Tesseract did not report word confidences: %s", exc)
            return None
        conf_values: list[float] = []
        for value in data.get("conf", []):
            if value in (-1, "-1", None, ""):
                continue
            try:
                conf_values.append(float(value))
            except (TypeError, ValueError):
                continue
        if not conf_values:
            return None
        return clamp_confidence(sum(conf_values) / len(conf_values) / 100.0)

    @staticmethod
    def _is_pdf(file_bytes: bytes, mime_type: str) -> bool:
        if (mime_type or "").lower() == PDF_MIME_TYPE:
            return True
        return file_bytes.lstrip().startswith(b"%PDF")

    def _pdf_to_images(self, pdf_bytes: bytes, file_name: str) -> list[object]:
        try:
            from pdf2image import convert_from_bytes
            from pdf2image.exceptions import (
                PDFInfoNotInstalledError,
                PDFPageCountError,
                PDFSyntaxError,
            )
        except ImportError as exc:
            raise EngineUnavailable(
                "pdf2image is required to OCR PDF files. Install with: pip install pdf2image. "
                "Poppler is also required on your system."
            ) from exc
        try:
            return convert_from_bytes(pdf_bytes, dpi=self._dpi)
        except PDFInfoNotInstalledError as exc:
            raise EngineUnavailable("Poppler is not installed or not on PATH.") from exc
        except (PDFPageCountError, PDFSyntaxError) as exc:
            raise FileUnreadable(f"Invalid PDF: {file_name}", file_name=file_name) from exc

    @staticmethod
    def _load_image(image_bytes: bytes, file_name: str) -> object:
        from PIL import Image, UnidentifiedImageError

        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise FileUnreadable(f"Invalid image: {file_name}", file_name=file_name) from exc
        return image

    @staticmethod
    def _preprocess_image(image: object) -> object:
        from PIL import Image, ImageFilter, ImageOps

        img = image.convert("L")
        img = ImageOps.autocontrast(img)
        img = img.filter(ImageFilter.MedianFilter(size=3))
        img = img.filter(ImageFilter.SHARPEN)
        if max(img.size) < 1200:
            img = img.resize(
                (img.size[0] * 2, img.size[1] * 2),
                resample=Image.BICUBIC,
            )
        return img

    def _engine_version(self) -> str:
        if self._version is None:
            try:
                import pytesseract

                self._version = str(pytesseract.get_tesseract_version())
            except Exception as exc:
                logger.warning("Could not determine Tesseract version: %s", exc)
                self._version = "unknown"
        return self._version
