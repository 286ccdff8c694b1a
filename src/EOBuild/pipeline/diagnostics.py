"""Severity-classified diagnostics and the stage gate built on them."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from EOBuild.errors import StageGateFailed
from EOBuild.logging import log_event

__all__ = [
    "DiagnosticCounts",
    "Severity",
    "count_diagnostics",
    "gate",
]


class Severity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class DiagnosticCounts:
    """Number of diagnostics per severity attached to an artifact."""

    critical: int = 0
    error: int = 0
    warning: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DiagnosticCounts":
        return cls(**{severity.value: int(data.get(severity.value, 0)) for severity in Severity})

    def as_dict(self) -> dict[str, int]:
        return {"critical": self.critical, "error": self.error, "warning": self.warning}


def count_diagnostics(payload: str | bytes) -> DiagnosticCounts:
    """Count ``<error severity="...">`` annotations embedded in an XML artifact.

    A payload that is not well-formed XML counts as a single critical
    diagnostic, so a broken artifact can never pass the gate.
    """

    try:
        root = ET.fromstring(payload)
    except ET.ParseError:
        return DiagnosticCounts(critical=1)
    counts = {severity: 0 for severity in Severity}
    for node in root.iter("error"):
        raw = (node.get("severity") or "").strip().lower()
        try:
            counts[Severity(raw)] += 1
        except ValueError:
            continue
    return DiagnosticCounts(
        critical=counts[Severity.CRITICAL],
        error=counts[Severity.ERROR],
        warning=counts[Severity.WARNING],
    )


def gate(
    counts: DiagnosticCounts,
    *,
    identifier: str,
    stage: str,
    fail_on_warning: bool,
    logger: logging.LoggerAdapter | logging.Logger,
) -> None:
    """Reject the artifact of ``identifier`` when its diagnostics demand it.

    Critical and error diagnostics always fail; warnings fail only when
    ``fail_on_warning`` is set and are logged otherwise.
    """

    if counts.critical or counts.error:
        raise StageGateFailed(
            f"{identifier} has {counts.critical} critical and {counts.error} error "
            f"diagnostic(s) after '{stage}'",
            identifier=identifier,
            stage=stage,
            counts=counts.as_dict(),
        )
    if counts.warning:
        if fail_on_warning:
            raise StageGateFailed(
                f"{identifier} has {counts.warning} warning(s) after '{stage}' "
                "and failing on warnings is enabled",
                identifier=identifier,
                stage=stage,
                counts=counts.as_dict(),
            )
        log_event(
            logger,
            "warning",
            f"{identifier} has {counts.warning} warning(s) after '{stage}'",
            identifier=identifier,
            stage=stage,
            warnings=counts.warning,
        )
