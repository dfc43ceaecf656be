import logging
import math
from typing import Optional

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"


class TokenEstimator:
    """Token counts for usage reporting.

    Uses the GPT-4 BPE encoding; when the encoding cannot be loaded (it is
    downloaded on first use) counts fall back to one token per four chars.
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        self.encoding_name = encoding_name
        self._encoder: Optional[tiktoken.Encoding] = None
        try:
            self._encoder = tiktoken.get_encoding(encoding_name)
        except Exception as e:
            logger.warning(f"Tokenizer {encoding_name} unavailable, using chars/4 estimate: {e}")

    @property
    def exact(self) -> bool:
        return self._encoder is not None

    def estimate(self, text: Optional[str]) -> int:
        if not text:
            return 0
        if self._encoder is not None:
            try:
                return len(self._encoder.encode(text, disallowed_special=()))
            except Exception as e:
                logger.debug(f"Token encoding failed, falling back to estimate: {e}")
        return math.ceil(len(text) / 4)

    def cleanup(self):
        self._encoder = None
