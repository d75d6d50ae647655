"""
Локальный провайдер OCR на Tesseract.

Один вызов image_to_data даёт все слова со структурой
блок → параграф → строка, из которых собирается текст.
"""

import io
import logging
from typing import Optional

import pytesseract
from PIL import Image, UnidentifiedImageError

from ocr_gateway.recognizers.base import RawText, RecognitionError, Recognizer

logger = logging.getLogger(__name__)


class TesseractRecognizer(Recognizer):
    """
    Распознавание через локально установленный Tesseract.

    pytesseract запускает отдельный процесс tesseract на каждый вызов,
    поэтому экземпляр можно использовать из нескольких потоков.

    Attributes:
        languages: языки Tesseract (["rus", "eng"] по умолчанию)
        oem: режим движка (--oem)
        psm: режим сегментации страницы (--psm), 3 — автоматический без OSD
    """

    name = "tesseract"

    def __init__(
        self,
        languages: Optional[list[str]] = None,
        oem: int = 3,
        psm: int = 3,
    ):
        self.languages = languages or ["rus", "eng"]
        self.oem = oem
        self.psm = psm

    def recognize_from_bytes(self, data: bytes) -> RawText:
        if not data:
            logger.error("Tesseract: пустые данные")
            raise RecognitionError("empty data")

        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            logger.error(f"Tesseract: не удалось загрузить изображение: {e}")
            raise RecognitionError(f"failed to load image: {e}") from e

        try:
            ocr_data = pytesseract.image_to_data(
                image,
                lang="+".join(self.languages),
                config=f"--oem {self.oem} --psm {self.psm}",
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            logger.error(f"Tesseract: ошибка распознавания: {e}")
            raise RecognitionError(f"failed to recognize text: {e}") from e

        return RawText(assemble_text(ocr_data))


def assemble_text(data: dict) -> str:
    """
    Собирает текст из словаря image_to_data с учётом структуры.

    Алгоритм:
        - Слова на одной строке (line_num) соединяются пробелами
        - Разные строки в одном блоке — новая строка (\\n)
        - Разные блоки — пустая строка между ними (\\n\\n)

    Args:
        data: словарь от pytesseract.image_to_data()

    Returns:
        str: собранный текст
    """
    # {block_num: {(par_num, line_num): [words]}}
    blocks: dict[int, dict[tuple[int, int], list[str]]] = {}

    for i, raw_word in enumerate(data["text"]):
        word = str(raw_word).strip()
        if not word:
            continue

        lines = blocks.setdefault(data["block_num"][i], {})
        key = (data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)

    result_blocks = []
    for block_num in sorted(blocks):
        lines = blocks[block_num]
        result_blocks.append(
            "\n".join(" ".join(lines[key]) for key in sorted(lines))
        )

    return "\n\n".join(result_blocks)
