"""Declarative XPath scraper for venue listing pages."""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urljoin

import structlog
from lxml import etree
from lxml import html as lxml_html

from eventsync.errors import ConfigurationError, SourceFetchError
from eventsync.normalize.fields import clean_text, find_times, parse_fuzzy_date, parse_time
from eventsync.orchestrator.source_loader import SourceConfig
from eventsync.sources.base import RawEvent, SourceCollaborator

LOGGER = structlog.get_logger(__name__)

_YEAR_RE = re.compile(r"\b\d{4}\b")
REQUIRED_FIELDS = ("title", "date")
SPECIAL_FIELDS = {"date", "time", "end_time", "url"}


def xpath_values(node: Any, expression: str) -> List[str]:
    """Evaluate ``expression`` against ``node`` and return non-empty text values."""
    result = node.xpath(expression)
    if not isinstance(result, list):
        result = [result]
    values: List[str] = []
    for item in result:
        if isinstance(item, etree._Element):
            text = item.text_content()
        elif isinstance(item, bytes):
            text = item.decode("utf-8", errors="ignore")
        else:
            text = str(item)
        text = " ".join(text.split())
        if text:
            values.append(text)
    return values


def _first(node: Any, expression: Optional[str]) -> Optional[str]:
    if not expression:
        return None
    values = xpath_values(node, expression)
    return values[0] if values else None


def _default_start(config: SourceConfig) -> Optional[time]:
    value = config.option("default_start_time")
    return parse_time(str(value)) if value is not None else None


class HtmlXPathSource(SourceCollaborator):
    """Scrapes repeating event cards using the XPath rule in ``config.options``.

    Rule keys: ``list_item``, ``fields`` (``title``, ``date``, ``time``,
    ``end_time``, ``description``, ``url``, ``price`` and any per-card venue
    field), ``venue`` (static venue details), ``base_url``,
    ``default_start_time`` and ``default_duration_hours``.
    """

    source_type = "html_xpath"

    def check_config(self, config: SourceConfig) -> None:
        self.require_url(config)
        list_item = config.option("list_item")
        fields = config.option("fields", {})
        if not list_item or not isinstance(fields, Mapping):
            raise ConfigurationError(f"Source {config.source_id} needs list_item and fields rules")
        missing = [name for name in REQUIRED_FIELDS if not fields.get(name)]
        if missing:
            raise ConfigurationError(f"Source {config.source_id} rules lack fields: {', '.join(missing)}")
        for expression in [list_item, *fields.values()]:
            try:
                etree.XPath(str(expression))
            except etree.XPathSyntaxError as exc:
                raise ConfigurationError(f"Source {config.source_id} has invalid XPath {expression!r}: {exc}") from exc
        default_start = config.option("default_start_time")
        if default_start and _default_start(config) is None:
            raise ConfigurationError(f"Source {config.source_id} has invalid default_start_time {default_start!r}")
        self.zone(config)

    async def fetch(self, config: SourceConfig) -> List[RawEvent]:
        url = self.require_url(config)
        body = await self.get_text(config, url)
        return self.parse(body, config)

    def parse(self, body: str, config: SourceConfig) -> List[RawEvent]:
        """Turn a listing page into raw events, skipping incomplete and past cards."""
        if not body or not body.strip():
            raise SourceFetchError(f"Empty page for {config.source_id}", source_id=config.source_id)
        try:
            document = lxml_html.fromstring(body)
        except (etree.ParserError, ValueError) as exc:
            raise SourceFetchError(f"Unparseable page for {config.source_id}: {exc}", source_id=config.source_id) from exc

        nodes = document.xpath(config.option("list_item"))
        if not nodes:
            LOGGER.warning("no_event_nodes", source_id=config.source_id, list_item=config.option("list_item"))
            return []

        now = self.local_now(config)
        events: List[RawEvent] = []
        for node in nodes:
            event = self._parse_node(node, config, now)
            if event is not None:
                events.append(event)
        LOGGER.info("html_parsed", source_id=config.source_id, nodes=len(nodes), events=len(events))
        return events

    def _parse_node(self, node: Any, config: SourceConfig, now: datetime) -> Optional[RawEvent]:
        fields: Mapping[str, str] = config.option("fields", {})
        title = _first(node, fields.get("title"))
        date_text = _first(node, fields.get("date"))
        if not title or not date_text:
            return None
        event_date = parse_fuzzy_date(date_text, reference=now)
        if event_date is None:
            return None
        event_date = self._roll_year(event_date, date_text, now.date())

        times = find_times(xpath_values(node, fields["time"])) if fields.get("time") else []
        start_time = times[0] if times else _default_start(config)
        if start_time is None:
            return None
        start = datetime.combine(event_date, start_time)
        if start < now:
            return None

        end_time: Optional[time] = None
        if fields.get("end_time"):
            found = find_times(xpath_values(node, fields["end_time"]))
            end_time = found[0] if found else None
        if end_time is not None:
            end = datetime.combine(event_date, end_time)
            if end <= start:
                end += timedelta(days=1)
        else:
            end = start + timedelta(hours=float(config.option("default_duration_hours", 3)))

        event: RawEvent = {
            "title": title,
            "start_date": start.date().isoformat(),
            "start_time": start.strftime("%H:%M"),
            "end_date": end.date().isoformat(),
            "end_time": end.strftime("%H:%M"),
        }
        href = _first(node, fields.get("url"))
        if href:
            event["ticket_url"] = urljoin(config.option("base_url", config.url), href)
        for name, expression in fields.items():
            if name in SPECIAL_FIELDS or name == "title":
                continue
            value = _first(node, expression)
            if value:
                event[name] = value
        venue: Dict[str, Any] = config.option("venue", {})
        for name, value in venue.items():
            text = clean_text(str(value)) if value is not None else None
            if text and not event.get(name):
                event[name] = text
        return event

    @staticmethod
    def _roll_year(event_date: date, date_text: str, today: date) -> date:
        """Listings omit the year; a date well behind today belongs to next year."""
        if _YEAR_RE.search(date_text) or event_date >= today - timedelta(days=90):
            return event_date
        try:
            return event_date.replace(year=event_date.year + 1)
        except ValueError:
            return event_date + timedelta(days=365)
