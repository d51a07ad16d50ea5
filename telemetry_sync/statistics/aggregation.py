"""Aggregation of alert events into statistics documents.

Alert events are stored as ``{"id": ..., "value": <Graph security alert>}``.
Every aggregation reads only ``value`` and tolerates missing fields: an
alert without evidence simply contributes nothing to the evidence-based
statistics.
"""

import re
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlparse

from telemetry_sync.config.models import StatisticsConfig
from telemetry_sync.domain.models import (
    AlertStatisticsDocument,
    AttackTypeStatistics,
    CountStatistic,
    DetectionSourceStatistics,
    IpThreatStatistics,
    ProcessingInfo,
    SeverityBreakdown,
    StatisticsPeriod,
    StatisticsType,
    StatusBreakdown,
    UserImpactStatistics,
)
from telemetry_sync.logging import get_logger
from telemetry_sync.persistence.database import get_session
from telemetry_sync.persistence.repositories import (
    AlertEventRepository,
    AlertStatisticsRepository,
    QueryPage,
    StatisticsQueryFilter,
)
from telemetry_sync.persistence.stores import SessionScope
from telemetry_sync.utils.timestamps import elapsed_ms, parse_iso_datetime, utc_now

from .exceptions import StatisticsError

logger = get_logger(__name__, component="statistics")

STATISTICS_TYPES = (
    StatisticsType.DETECTION_SOURCE,
    StatisticsType.USER_IMPACT,
    StatisticsType.IP_THREATS,
    StatisticsType.ATTACK_TYPES,
)

DETECTION_SOURCE_FIELDS = {
    "microsoftdefenderforendpoint": "microsoft_defender_for_endpoint",
    "microsoftdefenderforoffice365": "microsoft_defender_for_office365",
    "microsoftdefenderforcloudapps": "microsoft_defender_for_cloud_apps",
    "microsoftdefenderforidentity": "microsoft_defender_for_identity",
    "azureadidentityprotection": "azure_ad_identity_protection",
    "antivirus": "antivirus",
    "custom": "custom",
}

SEVERITY_FIELDS = ("critical", "high", "medium", "low", "informational")
STATUS_FIELDS = {"new": "new", "inProgress": "in_progress", "resolved": "resolved"}

IPV4_PATTERN = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
IPV6_PATTERN = re.compile(r"^([0-9a-f]{0,4}:){2,7}[0-9a-f]{0,4}$", re.IGNORECASE)
DOMAIN_FALLBACK_PATTERN = re.compile(r"^(?:https?://)?(?:www\.)?([^/\s:]+)", re.IGNORECASE)


@dataclass
class AggregationResult:
    """
    One generated statistics document.

    Attributes:
        statistics: The stored document
        total_processed: Alerts that went into the aggregate
        processing_time_ms: Time spent aggregating and storing
    """

    statistics: AlertStatisticsDocument
    total_processed: int
    processing_time_ms: int


def _alert_value(alert: Mapping[str, Any]) -> Dict[str, Any]:
    value = alert.get("value")
    return value if isinstance(value, dict) else {}


def _list_field(value: Mapping[str, Any], key: str) -> List[Any]:
    items = value.get(key)
    return items if isinstance(items, list) else []


def _odata_type(evidence: Mapping[str, Any]) -> str:
    return evidence.get("@odata.type") or ""


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def is_valid_ip(value: str) -> bool:
    """Loose IPv4/IPv6 shape check used to discard junk evidence values."""
    return bool(IPV4_PATTERN.match(value) or IPV6_PATTERN.match(value))


def extract_domain_from_url(url: str) -> Optional[str]:
    """Hostname of ``url``; bare hosts such as ``evil.example/path`` are accepted."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        hostname = None
    if hostname:
        return hostname
    match = DOMAIN_FALLBACK_PATTERN.match(url)
    return match.group(1) if match else None


def extract_user_upns(evidence: Iterable[Any]) -> List[str]:
    """User principal names from user and cloud logon session evidence."""
    upns: List[str] = []
    for item in evidence:
        if not isinstance(item, dict):
            continue
        odata_type = _odata_type(item)

        if "userEvidence" in odata_type or "User" in odata_type:
            upn = _non_empty((item.get("userAccount") or {}).get("userPrincipalName"))
            if upn:
                upns.append(upn)

        if "cloudLogonSessionEvidence" in odata_type or "CloudLogonSession" in odata_type:
            account = (item.get("account") or {}).get("userAccount") or {}
            upn = _non_empty(account.get("userPrincipalName"))
            if upn:
                upns.append(upn)
    return upns


def extract_ip_addresses(alert: Mapping[str, Any]) -> List[str]:
    """Distinct IP addresses named by one alert, in order of appearance."""
    value = _alert_value(alert)
    ips: List[str] = []

    for item in _list_field(value, "evidence"):
        if not isinstance(item, dict):
            continue
        odata_type = _odata_type(item)
        if "ipEvidence" in odata_type or "Ip" in odata_type:
            ip = _non_empty(item.get("ipAddress"))
            if ip and is_valid_ip(ip):
                ips.append(ip)
        if "mailboxEvidence" in odata_type or "Mailbox" in odata_type:
            ip = _non_empty(item.get("senderIp"))
            if ip and is_valid_ip(ip):
                ips.append(ip)

    for connection in _list_field(value, "networkConnections"):
        if isinstance(connection, dict):
            ip = _non_empty(connection.get("lastExternalIpAddress"))
            if ip and is_valid_ip(ip):
                ips.append(ip)

    return list(dict.fromkeys(ips))


def extract_domains(alert: Mapping[str, Any]) -> List[str]:
    """Distinct domains named by one alert, in order of appearance."""
    value = _alert_value(alert)
    domains: List[str] = []

    for item in _list_field(value, "evidence"):
        if not isinstance(item, dict):
            continue
        odata_type = _odata_type(item)
        if "urlEvidence" in odata_type or "Url" in odata_type:
            url = _non_empty(item.get("url"))
            domain = extract_domain_from_url(url) if url else None
            if domain:
                domains.append(domain)
        if "domainEvidence" in odata_type or "Domain" in odata_type:
            domain = _non_empty(item.get("domain"))
            if domain:
                domains.append(domain)

    for connection in _list_field(value, "networkConnections"):
        if isinstance(connection, dict):
            domain = _non_empty(connection.get("destinationDomain"))
            if domain:
                domains.append(domain)

    return list(dict.fromkeys(domains))


def build_top_n(counts: Mapping[str, int], top_n: int, total: int) -> List[CountStatistic]:
    """
    The ``top_n`` most frequent values with their share of ``total``.

    Ties keep first-seen order.
    """
    ranked = sorted(counts.items(), key=lambda entry: entry[1], reverse=True)[:top_n]
    return [
        CountStatistic(
            value=value,
            count=count,
            percentage=(count / total) * 100 if total > 0 else 0.0,
        )
        for value, count in ranked
    ]


def aggregate_detection_sources(alerts: List[Mapping[str, Any]]) -> DetectionSourceStatistics:
    counts = {name: 0 for name in DETECTION_SOURCE_FIELDS.values()}
    other = 0
    for alert in alerts:
        source = (_alert_value(alert).get("detectionSource") or "other").lower()
        field_name = DETECTION_SOURCE_FIELDS.get(source)
        if field_name is None:
            other += 1
        else:
            counts[field_name] += 1
    return DetectionSourceStatistics(**counts, other=other, total=len(alerts))


def aggregate_user_impact(alerts: List[Mapping[str, Any]], top_n: int) -> UserImpactStatistics:
    user_counts: Counter = Counter()
    critical_users = set()

    for alert in alerts:
        value = _alert_value(alert)
        is_critical = (value.get("severity") or "").lower() == "critical"
        for upn in extract_user_upns(_list_field(value, "evidence")):
            user_counts[upn] += 1
            if is_critical:
                critical_users.add(upn)

    return UserImpactStatistics(
        top_users=build_top_n(user_counts, top_n, len(alerts)),
        total_unique_users=len(user_counts),
        total_alerts=len(alerts),
        users_with_multiple_alerts=sum(1 for count in user_counts.values() if count > 1),
        users_with_critical_alerts=len(critical_users),
    )


def aggregate_ip_threats(alerts: List[Mapping[str, Any]], top_n: int) -> IpThreatStatistics:
    ip_counts: Counter = Counter()
    domain_counts: Counter = Counter()

    for alert in alerts:
        ip_counts.update(extract_ip_addresses(alert))
        domain_counts.update(extract_domains(alert))

    return IpThreatStatistics(
        top_threat_ips=build_top_n(ip_counts, top_n, len(alerts)),
        top_domains=build_top_n(domain_counts, top_n, len(alerts)),
        total_unique_ips=len(ip_counts),
        total_unique_domains=len(domain_counts),
        total_alerts=len(alerts),
        ips_with_multiple_alerts=sum(1 for count in ip_counts.values() if count > 1),
    )


def aggregate_attack_types(alerts: List[Mapping[str, Any]], top_n: int) -> AttackTypeStatistics:
    severity = {name: 0 for name in SEVERITY_FIELDS}
    status = {name: 0 for name in STATUS_FIELDS.values()}
    categories: Counter = Counter()
    techniques: Counter = Counter()
    families: Counter = Counter()

    for alert in alerts:
        value = _alert_value(alert)

        alert_severity = (value.get("severity") or "informational").lower()
        if alert_severity in severity:
            severity[alert_severity] += 1

        # Graph reports status in camelCase (inProgress)
        status_field = STATUS_FIELDS.get(value.get("status") or "new")
        if status_field is not None:
            status[status_field] += 1

        if value.get("category"):
            categories[value["category"]] += 1
        for technique in _list_field(value, "mitreTechniques"):
            techniques[technique] += 1
        if value.get("threatFamilyName"):
            families[value["threatFamilyName"]] += 1

    total = len(alerts)
    return AttackTypeStatistics(
        by_severity=SeverityBreakdown(**severity, total=total),
        by_category=build_top_n(categories, top_n, total),
        by_mitre_technique=build_top_n(techniques, top_n, total),
        by_threat_family=build_top_n(families, top_n, total),
        by_status=StatusBreakdown(**status, total=total),
    )


def build_statistics_block(
    statistics_type: StatisticsType, alerts: List[Mapping[str, Any]], top_n: int
) -> Dict[str, Any]:
    """Keyword arguments carrying the aggregate of ``statistics_type``."""
    statistics_type = StatisticsType(statistics_type)
    if statistics_type is StatisticsType.DETECTION_SOURCE:
        return {"detection_source_stats": aggregate_detection_sources(alerts)}
    if statistics_type is StatisticsType.USER_IMPACT:
        return {"user_impact_stats": aggregate_user_impact(alerts, top_n)}
    if statistics_type is StatisticsType.IP_THREATS:
        return {"ip_threat_stats": aggregate_ip_threats(alerts, top_n)}
    return {"attack_type_stats": aggregate_attack_types(alerts, top_n)}


class AlertStatisticsService:
    """
    Generates, stores and queries alert statistics documents.

    Alerts of a period are read once per generation run and every statistics
    type is aggregated from that same list.
    """

    def __init__(
        self,
        config: Optional[StatisticsConfig] = None,
        session_scope: SessionScope = get_session,
    ):
        self.config = config or StatisticsConfig()
        self._session_scope = session_scope

    def generate_statistics_for_period(
        self, period: StatisticsPeriod, is_initial_run: bool = False
    ) -> List[AggregationResult]:
        """
        Aggregate and store every statistics type for ``period``.

        Args:
            period: Window of alert creation times to aggregate
            is_initial_run: Recorded in each document's processing info

        Returns:
            One AggregationResult per statistics type, in STATISTICS_TYPES order

        Raises:
            StatisticsError: If alerts cannot be read or a document cannot be stored
        """
        logger.info(
            "Generating alert statistics",
            extra={
                "event": "statistics.generate.started",
                "period_start": period.start_date,
                "period_end": period.end_date,
                "period_type": period.period_type.value,
                "is_initial_run": is_initial_run,
            },
        )

        try:
            alerts = self.fetch_alerts_for_period(period)
        except StatisticsError:
            raise
        except Exception as e:
            raise StatisticsError(f"Failed to read alert events: {e}") from e

        if not alerts:
            logger.warning(
                "No alerts found for period, generating empty statistics",
                extra={"event": "statistics.generate.no_alerts", "period_start": period.start_date},
            )

        results = [
            self._generate_for_type(statistics_type, period, alerts, is_initial_run)
            for statistics_type in STATISTICS_TYPES
        ]

        logger.info(
            "Alert statistics generated",
            extra={
                "event": "statistics.generate.completed",
                "types_generated": len(results),
                "alerts_processed": len(alerts),
            },
        )
        return results

    def fetch_alerts_for_period(self, period: StatisticsPeriod) -> List[Dict[str, Any]]:
        """Every alert created inside ``period``, read in ``batch_size`` pages."""
        start = parse_iso_datetime(period.start_date)
        end = parse_iso_datetime(period.end_date)
        if start is None or end is None:
            raise StatisticsError(
                f"Invalid statistics period: {period.start_date!r} - {period.end_date!r}"
            )

        alerts: List[Dict[str, Any]] = []
        token = None
        batches = 0
        while True:
            with self._session_scope() as session:
                page = AlertEventRepository(session, self.config.alerts_container).query_for_period(
                    start, end, self.config.batch_size, token
                )
            alerts.extend(page.items)
            batches += 1
            logger.debug(
                "Fetched alert batch",
                extra={
                    "event": "statistics.fetch.batch",
                    "batch_number": batches,
                    "batch_size": len(page.items),
                    "total_fetched": len(alerts),
                },
            )
            if not page.has_more:
                break
            token = page.continuation_token

        logger.info(
            f"Fetched {len(alerts)} alerts in {batches} batches",
            extra={"event": "statistics.fetch.completed", "alert_count": len(alerts)},
        )
        return alerts

    def _generate_for_type(
        self,
        statistics_type: StatisticsType,
        period: StatisticsPeriod,
        alerts: List[Dict[str, Any]],
        is_initial_run: bool,
    ) -> AggregationResult:
        started = time.monotonic()
        block = build_statistics_block(statistics_type, alerts, self.config.top_n)

        last_alert_date = _alert_value(alerts[-1]).get("createdDateTime") if alerts else None
        processing_time_ms = elapsed_ms(started)

        document = AlertStatisticsDocument(
            id=AlertStatisticsDocument.build_id(statistics_type, period),
            period_start_date=period.start_day,
            type=statistics_type,
            period=period,
            generated_at=utc_now(),
            processing_info=ProcessingInfo(
                total_alerts_processed=len(alerts),
                processing_time_ms=processing_time_ms,
                is_initial_run=is_initial_run,
                last_processed_alert_date=last_alert_date,
            ),
            **block,
        )

        try:
            with self._session_scope() as session:
                AlertStatisticsRepository(session, self.config.statistics_container).save(document)
        except Exception as e:
            logger.error(
                f"Failed to store {statistics_type.value} statistics: {e}",
                extra={"event": "statistics.document.save_failed", "statistics_id": document.id},
                exc_info=True,
            )
            raise StatisticsError(f"Failed to store {statistics_type.value} statistics: {e}") from e

        return AggregationResult(
            statistics=document,
            total_processed=len(alerts),
            processing_time_ms=elapsed_ms(started),
        )

    def query_statistics(
        self,
        query_filter: Optional[StatisticsQueryFilter] = None,
        page_size: int = 100,
        continuation_token: Optional[str] = None,
    ) -> QueryPage[AlertStatisticsDocument]:
        """Newest-first page of stored statistics matching ``query_filter``."""
        with self._session_scope() as session:
            return AlertStatisticsRepository(
                session, self.config.statistics_container
            ).query_statistics(query_filter, page_size, continuation_token)

    def get_by_id(self, statistics_id: str) -> Optional[AlertStatisticsDocument]:
        with self._session_scope() as session:
            return AlertStatisticsRepository(session, self.config.statistics_container).get_by_id(
                statistics_id
            )
