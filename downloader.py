"""
UN Consolidated List Downloader

Fetches the remote sanctions feed and parses it into canonical record
field dicts ready for the feed synchronizer.

Features:
- Bounded-timeout HTTP fetch (requests)
- Hardened lxml parsing (no DTDs, no entity resolution, no network)
- Blank and "not applicable" values omitted, never stored as placeholders
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from lxml import etree

from config_manager import get_config, ConfigManager
from database.models import ListType, join_name_parts
from field_mapper import clean_token, parse_list_field
from xml_utils import secure_fromstring, get_text_from_element, get_texts_from_elements

logger = logging.getLogger(__name__)

FEED_SOURCE = 'UN Consolidated List'


class FeedError(Exception):
    """Raised when the remote feed cannot be fetched or parsed"""
    pass


@dataclass
class FeedDocument:
    """Parsed feed contents as canonical field dicts"""
    individuals: List[Dict[str, Any]] = field(default_factory=list)
    entities: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.individuals) + len(self.entities)


def _texts(elem: Any, path: str) -> List[str]:
    return parse_list_field(get_texts_from_elements(elem, path))


def _text(elem: Any, path: str) -> Optional[str]:
    return clean_token(get_text_from_element(elem, path))


class FeedDownloader:
    """Downloads and parses the UN consolidated sanctions list"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            config: Configuration manager instance
            url: Feed URL (defaults to data.un_url)
            timeout: Request timeout in seconds (defaults to data.request_timeout_seconds)
            session: requests session to reuse (for testing)
        """
        self.config = config or get_config()
        self.url = url or self.config.data.un_url
        self.timeout = timeout or self.config.data.request_timeout_seconds
        self.http = session or requests.Session()

    def fetch(self) -> bytes:
        """
        Download the feed document.

        Returns:
            Raw XML bytes

        Raises:
            FeedError: On network failure or non-2xx status
        """
        logger.info(f"Downloading UN Consolidated List from {self.url}")
        try:
            response = self.http.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to download UN list: {e}")
            raise FeedError(f"Failed to download feed: {e}") from e

        size_mb = len(response.content) / 1024 / 1024
        logger.info(f"Downloaded UN list ({size_mb:.1f} MB)")
        return response.content

    def parse(self, content: bytes) -> FeedDocument:
        """
        Parse a feed document.

        Args:
            content: Raw XML bytes

        Returns:
            FeedDocument with individual and entity field dicts

        Raises:
            FeedError: If the document is not well-formed XML
        """
        try:
            root = secure_fromstring(content)
        except etree.XMLSyntaxError as e:
            raise FeedError(f"Error parsing XML: {e}") from e

        if root.tag != 'CONSOLIDATED_LIST':
            raise FeedError(f"Unexpected feed root element: {root.tag}")

        document = FeedDocument()
        for elem in root.findall('INDIVIDUALS/INDIVIDUAL'):
            document.individuals.append(self._parse_individual(elem))
        for elem in root.findall('ENTITIES/ENTITY'):
            document.entities.append(self._parse_entity(elem))

        if not document.individuals:
            logger.info("No individuals found in the feed")
        if not document.entities:
            logger.info("No entities found in the feed")

        logger.info(
            f"Parsed {document.total} feed records "
            f"({len(document.individuals)} individuals, {len(document.entities)} entities)"
        )
        return document

    def fetch_and_parse(self) -> FeedDocument:
        return self.parse(self.fetch())

    def _parse_individual(self, elem: Any) -> Dict[str, Any]:
        first = _text(elem, 'FIRST_NAME')
        second = _text(elem, 'SECOND_NAME')
        third = _text(elem, 'THIRD_NAME')
        birth_years = _texts(elem, 'INDIVIDUAL_DATE_OF_BIRTH/YEAR')

        return {
            'reference_number': _text(elem, 'REFERENCE_NUMBER'),
            'first_name': first,
            'second_name': second,
            'third_name': third,
            'full_name': join_name_parts(first, second, third) or None,
            'alias_names': _texts(elem, 'INDIVIDUAL_ALIAS/ALIAS_NAME'),
            'date_of_birth': ', '.join(birth_years) or None,
            'title': _texts(elem, 'TITLE/VALUE'),
            'nationality': _texts(elem, 'NATIONALITY/VALUE'),
            'address_city': _texts(elem, 'INDIVIDUAL_ADDRESS/CITY'),
            'address_country': _texts(elem, 'INDIVIDUAL_ADDRESS/COUNTRY'),
            'birth_city': _texts(elem, 'INDIVIDUAL_PLACE_OF_BIRTH/CITY'),
            'birth_country': _texts(elem, 'INDIVIDUAL_PLACE_OF_BIRTH/COUNTRY'),
            'document_type': _texts(elem, 'INDIVIDUAL_DOCUMENT/TYPE_OF_DOCUMENT'),
            'document_number': _texts(elem, 'INDIVIDUAL_DOCUMENT/NUMBER'),
            'document_issue_country': _texts(elem, 'INDIVIDUAL_DOCUMENT/COUNTRY_OF_ISSUE'),
            'source': FEED_SOURCE,
            'un_list_type': _text(elem, 'UN_LIST_TYPE'),
            'list_type': ListType.UN_SANCTIONS,
            'is_active': True,
        }

    def _parse_entity(self, elem: Any) -> Dict[str, Any]:
        streets = _texts(elem, 'ENTITY_ADDRESS/STREET')
        cities = _texts(elem, 'ENTITY_ADDRESS/CITY')
        countries = _texts(elem, 'ENTITY_ADDRESS/COUNTRY')

        addresses = []
        for address in elem.findall('ENTITY_ADDRESS'):
            line = ', '.join(
                part for part in (
                    _text(address, 'STREET'),
                    _text(address, 'CITY'),
                    _text(address, 'COUNTRY'),
                ) if part
            )
            if line and line not in addresses:
                addresses.append(line)

        return {
            'reference_number': _text(elem, 'REFERENCE_NUMBER'),
            'name': _text(elem, 'FIRST_NAME') or '',
            'alias_names': _texts(elem, 'ENTITY_ALIAS/ALIAS_NAME'),
            'addresses': addresses,
            'address_street': streets,
            'address_city': cities,
            'address_country': countries,
            'source': FEED_SOURCE,
            'un_list_type': _text(elem, 'UN_LIST_TYPE'),
            'list_type': ListType.UN_SANCTIONS,
            'is_active': True,
        }
