"""
Natural-order sequencing of source images.

Orders source identifiers so that digit runs compare as integers
("img2.png" before "img10.png") and text runs compare with the active
locale's collation, ignoring case, then numbers each source by its
sorted position.
"""

import io
import locale
import math
import re
import threading
import unicodedata
from dataclasses import dataclass
from functools import cmp_to_key
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError
from loguru import logger

from .errors import DecodeError


# ASCII digits only; fullwidth digits stay part of the text run
TOKEN_RE = re.compile(r'([0-9]+)|([^0-9]+)')

Token = Tuple[float, str]


def _collation_key(text: str) -> str:
    return unicodedata.normalize('NFC', text).casefold()


def default_collate(a: str, b: str) -> int:
    """
    Case-insensitive collation of text runs.

    Compares NFC-normalized, casefolded text with the active locale first;
    text equal at that strength breaks ties lowercase first.
    """
    result = locale.strcoll(_collation_key(a), _collation_key(b))
    if result:
        return result
    a_tie, b_tie = a.swapcase(), b.swapcase()
    return (a_tie > b_tie) - (a_tie < b_tie)


def tokenize(identifier: str) -> List[Token]:
    """
    Split an identifier into (number, text) tokens.

    A digit run becomes (int value, ""); a text run becomes (inf, text), so
    at any position a name with digits sorts before one with text.
    """
    tokens: List[Token] = []
    for match in TOKEN_RE.finditer(identifier):
        digits, text = match.groups()
        if digits is not None:
            tokens.append((int(digits), ""))
        else:
            tokens.append((math.inf, text))
    return tokens


def natural_compare(a: str, b: str, collate: Callable[[str, str], int] = None) -> int:
    """Three-way natural comparison of two identifiers"""
    collate = collate or default_collate
    a_tokens = tokenize(a)
    b_tokens = tokenize(b)

    for (a_num, a_str), (b_num, b_str) in zip(a_tokens, b_tokens):
        if a_num != b_num:
            return -1 if a_num < b_num else 1
        if a_str != b_str:
            result = collate(a_str, b_str)
            if result:
                return -1 if result < 0 else 1

    # Shorter token stream first
    return (len(a_tokens) > len(b_tokens)) - (len(a_tokens) < len(b_tokens))


def natural_sorted(identifiers: Iterable[str], collate: Callable[[str, str], int] = None) -> List[str]:
    """Stable natural sort; ties keep input order"""
    return sorted(identifiers, key=cmp_to_key(lambda a, b: natural_compare(a, b, collate)))


class SourceRaster:
    """A user-supplied image, decoded lazily and released explicitly"""

    def __init__(self, identifier: str, data: Optional[bytes] = None, path: Optional[Path] = None):
        if data is None and path is None:
            raise ValueError("SourceRaster needs either data or a path")
        self.identifier = identifier
        self.path = Path(path) if path is not None else None
        self._data = data
        self._image: Optional[Image.Image] = None
        self._released = False
        self._lock = threading.Lock()

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "SourceRaster":
        path = Path(path)
        return cls(path.name, path=path)

    @classmethod
    def from_bytes(cls, identifier: str, data: bytes) -> "SourceRaster":
        return cls(identifier, data=data)

    @property
    def released(self) -> bool:
        return self._released

    def decode(self) -> Image.Image:
        """Decode (once) and return the raster; raises DecodeError"""
        with self._lock:
            if self._released:
                raise DecodeError(self.identifier, "source was already released")
            if self._image is not None:
                return self._image

            image = None
            try:
                if self._data is not None:
                    image = Image.open(io.BytesIO(self._data))
                else:
                    image = Image.open(self.path)
                image.load()
            except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as e:
                if image is not None:
                    image.close()
                raise DecodeError(self.identifier, str(e)) from e

            if image.width <= 0 or image.height <= 0:
                image.close()
                raise DecodeError(self.identifier, "image has no pixels")

            self._image = image
            logger.debug(f"Decoded source {self.identifier} ({image.size}, {image.mode})")
            return image

    def release(self) -> bool:
        """Free the decoded raster and raw bytes; True only on the first call"""
        with self._lock:
            if self._released:
                return False
            self._released = True
            if self._image is not None:
                self._image.close()
                self._image = None
            self._data = None
        logger.debug(f"Released source {self.identifier}")
        return True


@dataclass(frozen=True)
class SourceItem:
    """A source raster with its natural-order position"""
    identifier: str
    raster: SourceRaster
    sequence_position: int

    @property
    def item_id(self) -> str:
        return f"{self.identifier}-{self.sequence_position}"


def sequence_sources(rasters: Iterable[SourceRaster],
                     collate: Callable[[str, str], int] = None) -> List[SourceItem]:
    """Sort rasters naturally by identifier and assign 0-based positions"""
    ordered = sorted(
        rasters,
        key=cmp_to_key(lambda a, b: natural_compare(a.identifier, b.identifier, collate))
    )
    items = [SourceItem(r.identifier, r, position) for position, r in enumerate(ordered)]
    logger.debug(f"Sequenced {len(items)} sources: {[i.identifier for i in items]}")
    return items
