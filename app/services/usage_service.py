"""Usage telemetry recording and aggregation."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.models.provider import Provider
from app.models.usage_record import UsageRecord
from app.services.exceptions import TelemetryWriteError

logger = logging.getLogger(__name__)


@dataclass
class UsageOutcome:
    """Outcome of one chat invocation."""

    success: bool
    chatbot_id: Optional[int] = None
    user_id: Optional[str] = None
    provider_id: Optional[int] = None
    model_used: Optional[str] = None
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    tokens_used: Optional[int] = None
    failover_count: int = 0


def estimate_tokens(text: str) -> int:
    """Rough token count, one token per four characters."""
    return math.ceil(len(text or "") / 4)


class UsageTelemetryRecorder:
    """Append usage records; a failed write never fails the caller."""

    def record(self, db: Session, outcome: UsageOutcome) -> Optional[UsageRecord]:
        """Append one usage record.

        Returns:
            The stored record, or None if the write failed.
        """
        try:
            return self._write(db, outcome)
        except TelemetryWriteError as e:
            logger.error(f"Dropping usage record: {e}")
            return None

    def _write(self, db: Session, outcome: UsageOutcome) -> UsageRecord:
        record = UsageRecord(
            chatbot_id=outcome.chatbot_id,
            user_id=outcome.user_id,
            provider_id=outcome.provider_id,
            model_used=outcome.model_used,
            response_time_ms=outcome.response_time_ms,
            success=outcome.success,
            error_message=outcome.error_message,
            tokens_used=outcome.tokens_used,
            failover_count=outcome.failover_count
        )
        try:
            db.add(record)
            db.commit()
            db.refresh(record)
        except Exception as e:
            db.rollback()
            raise TelemetryWriteError(f"Failed to write usage record: {e}") from e

        logger.debug(f"Recorded usage {record.id} (success={record.success}, model={record.model_used})")
        return record

    def summarize(self, db: Session, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Aggregate usage per provider.

        Args:
            db: Database session.
            since: Only count records created at or after this time.

        Returns:
            Dictionary with overall totals and a ``providers`` breakdown.
        """
        query = db.query(
            UsageRecord.provider_id,
            func.count(UsageRecord.id),
            func.sum(case((UsageRecord.success.is_(True), 1), else_=0)),
            func.avg(UsageRecord.response_time_ms),
            func.sum(UsageRecord.tokens_used),
        )
        if since is not None:
            query = query.filter(UsageRecord.created_at >= since)
        rows = query.group_by(UsageRecord.provider_id).all()

        provider_names = dict(db.query(Provider.id, Provider.name).all())
        providers: List[Dict[str, Any]] = []
        total_requests = 0
        total_success = 0
        total_tokens = 0

        for provider_id, count, successes, avg_latency, tokens in rows:
            successes = int(successes or 0)
            tokens = int(tokens or 0)
            total_requests += count
            total_success += successes
            total_tokens += tokens
            providers.append({
                "provider_id": provider_id,
                "provider_name": provider_names.get(provider_id, "Default" if provider_id is None else None),
                "requests": count,
                "successful_requests": successes,
                "success_rate": round(successes / count, 4) if count else 0.0,
                "avg_response_time_ms": round(float(avg_latency), 1) if avg_latency is not None else None,
                "tokens_used": tokens,
            })

        return {
            "since": since.isoformat() if since else None,
            "total_requests": total_requests,
            "successful_requests": total_success,
            "success_rate": round(total_success / total_requests, 4) if total_requests else 0.0,
            "tokens_used": total_tokens,
            "providers": providers,
        }
