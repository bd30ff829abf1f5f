"""
Shared XML utilities for the Blocklist Screening Service

This module contains the XML helpers used by the remote feed downloader and
the log sanitizer shared by the API layer.

SECURITY: All XML parsing uses a hardened lxml parser to prevent XXE attacks.
"""

import logging
import re
from typing import Optional, Any, List

from lxml import etree

logger = logging.getLogger(__name__)


def get_secure_parser() -> etree.XMLParser:
    """Get a secure XML parser that prevents XXE attacks

    Returns:
        lxml parser with DTD loading, entity resolution and network access disabled
    """
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        dtd_validation=False,
        load_dtd=False,
        huge_tree=False,
        remove_blank_text=True
    )


def secure_fromstring(content: bytes) -> Any:
    """Securely parse an in-memory XML document

    Args:
        content: Raw XML bytes (as downloaded)

    Returns:
        Root element

    Raises:
        etree.XMLSyntaxError: If XML is invalid
    """
    return etree.fromstring(content, parser=get_secure_parser())


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    # Remove newlines, carriage returns, and other control characters
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    # Collapse multiple spaces
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    # Truncate to reasonable length
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def get_text_from_element(elem: Any, path: str) -> Optional[str]:
    """Safely get text content from an XML element

    Args:
        elem: Parent XML element
        path: XPath-style path to child element

    Returns:
        Stripped text content or None if element not found or empty
    """
    child = elem.find(path)
    if child is not None and child.text:
        text = child.text.strip()
        return text or None
    return None


def get_texts_from_elements(elem: Any, path: str) -> List[str]:
    """Collect text content of every element matching a path

    Works for repeated groups such as INDIVIDUAL_ALIAS/ALIAS_NAME where
    the feed emits one group per value.

    Args:
        elem: Parent XML element
        path: XPath-style path, relative to elem

    Returns:
        List of stripped non-empty texts in document order
    """
    values = []
    for child in elem.findall(path):
        if child.text and child.text.strip():
            values.append(child.text.strip())
    return values
