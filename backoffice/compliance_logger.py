# backoffice/compliance_logger.py
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog


class ComplianceLogger:
	"""Emits audit facts (who changed what, from which state to which).

	Storage of these facts belongs to whatever consumes the "audit" log stream.
	Emission never raises into the business operation that produced the fact.
	"""

	def __init__(self, institution_id: str = 'CLINIC-BACKOFFICE'):
		self.institution_id = institution_id
		self.logger = structlog.get_logger("audit")

	def log_event(
		self,
		actor_user_id: Optional[int],
		actor_role: Optional[str],
		action: str,
		entity_type: str,
		entity_id: Any,
		metadata: Optional[Dict[str, Any]] = None,
		ip: Optional[str] = None,
		user_agent: Optional[str] = None,
	) -> None:
		role = getattr(actor_role, 'value', actor_role)
		try:
			self.logger.info(
				'audit_event',
				institution_id=self.institution_id,
				actor_user_id=actor_user_id,
				actor_role=role,
				action=action,
				entity_type=entity_type,
				entity_id=entity_id,
				metadata=_plain(metadata or {}),
				ip=ip,
				user_agent=user_agent,
				occurred_at=datetime.now(timezone.utc).isoformat(),
			)
		except Exception as e:
			structlog.get_logger(__name__).warning(
				'audit_emit_failed', action=action, entity_type=entity_type, entity_id=entity_id, error=str(e)
			)

	def log_status_change(self, actor, entity_type: str, entity_id: Any, from_status: Any, to_status: Any, **kwargs: Any) -> None:
		"""Convenience wrapper for APPOINTMENT/PAYMENT status transitions."""
		self.log_event(
			actor_user_id=getattr(actor, 'id', None),
			actor_role=getattr(actor, 'role', None),
			action=f'{entity_type}_STATUS_CHANGE',
			entity_type=entity_type,
			entity_id=entity_id,
			metadata={'from': from_status, 'to': to_status, **kwargs},
		)


def _plain(metadata: Dict[str, Any]) -> Dict[str, Any]:
	plain = {}
	for key, value in metadata.items():
		if isinstance(value, datetime):
			value = value.isoformat()
		elif hasattr(value, 'value'):
			value = value.value
		plain[key] = value
	return plain


# Singleton instance for global import
compliance_logger = ComplianceLogger()
