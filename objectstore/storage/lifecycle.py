from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, List

S3_XML_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"

STATUS_ENABLED = "Enabled"


def normalize_prefix(prefix: str) -> str:
    """Folder prefix with exactly one trailing slash ("logs" / "logs/" / "logs//" -> "logs/")."""
    return (prefix or "").rstrip("/") + "/"


@dataclass(frozen=True)
class LifecycleRule:
    rule_id: str
    prefix: str
    days_to_expiry: int

    @classmethod
    def build(cls, rule_id: str, prefix: str, days_to_expiry: int) -> "LifecycleRule":
        rule_id = (rule_id or "").strip()
        if not rule_id:
            raise ValueError("lifecycle rule id is required")
        days = days_to_expiry
        if isinstance(days, bool) or not isinstance(days, int):
            raise TypeError(f"lifecycle expiry must be a whole number of days (got {days_to_expiry!r})")
        if days < 1:
            raise ValueError(f"lifecycle expiry must be at least 1 day (got {days_to_expiry})")
        return cls(rule_id=rule_id, prefix=normalize_prefix(prefix), days_to_expiry=days)


def render_lifecycle_policy(rule: LifecycleRule) -> str:
    """
    Single-rule S3 lifecycle configuration.

    Setting this document replaces every rule already on the bucket.
    """
    root = ET.Element("LifecycleConfiguration", xmlns=S3_XML_NAMESPACE)
    el_rule = ET.SubElement(root, "Rule")
    ET.SubElement(el_rule, "ID").text = rule.rule_id
    el_filter = ET.SubElement(el_rule, "Filter")
    ET.SubElement(el_filter, "Prefix").text = rule.prefix
    ET.SubElement(el_rule, "Status").text = STATUS_ENABLED
    el_expiration = ET.SubElement(el_rule, "Expiration")
    ET.SubElement(el_expiration, "Days").text = str(rule.days_to_expiry)
    return ET.tostring(root, encoding="unicode")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str):
    for c in element:
        if _local(c.tag) == name:
            return c
    return None


def _text(element: ET.Element, name: str) -> str:
    c = _child(element, name)
    return (c.text or "").strip() if c is not None else ""


def parse_lifecycle_policy(policy_xml: str) -> List[Dict[str, Any]]:
    """
    Lifecycle XML -> list of rule dicts shaped like boto3's
    put_bucket_lifecycle_configuration Rules.

    Understands ID, Filter/Prefix (or legacy top-level Prefix), Status and
    Expiration/Days, which is everything render_lifecycle_policy emits.
    """
    root = ET.fromstring(policy_xml)
    rules: List[Dict[str, Any]] = []
    for el in root:
        if _local(el.tag) != "Rule":
            continue
        rule: Dict[str, Any] = {"Status": _text(el, "Status") or STATUS_ENABLED}

        rule_id = _text(el, "ID")
        if rule_id:
            rule["ID"] = rule_id

        el_filter = _child(el, "Filter")
        if el_filter is not None:
            rule["Filter"] = {"Prefix": _text(el_filter, "Prefix")}
        else:
            rule["Filter"] = {"Prefix": _text(el, "Prefix")}

        el_expiration = _child(el, "Expiration")
        if el_expiration is not None:
            days = _text(el_expiration, "Days")
            if days:
                rule["Expiration"] = {"Days": int(days)}

        rules.append(rule)
    return rules
