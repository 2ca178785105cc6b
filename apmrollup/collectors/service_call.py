"""
Service Call Collector

Aggregates outbound service calls keyed by (type, text). The limit counts
entries across all types; overflow entries are still kept per type.
"""

from typing import Iterable, List

from apmrollup.collectors.common import BoundedCollector, LimitScope
from apmrollup.wire.model import ServiceCallMessage

DEFAULT_MAX_SERVICE_CALLS = 500


class ServiceCallCollector(BoundedCollector):
    def __init__(self, limit: int = DEFAULT_MAX_SERVICE_CALLS):
        super().__init__(limit, LimitScope.GLOBAL)

    def merge_service_call(
        self,
        service_call_type: str,
        text: str,
        total_duration_nanos: float,
        execution_count: int,
    ) -> None:
        self.merge_entry(service_call_type, text, total_duration_nanos, execution_count)

    def merge_wire(self, service_calls: Iterable[ServiceCallMessage]) -> None:
        for service_call in service_calls:
            self.merge_entry(
                service_call.type,
                service_call.text,
                service_call.total_duration_nanos,
                service_call.execution_count,
            )

    def merge(self, other: "ServiceCallCollector") -> None:
        for entries in list(other._entries.values()):
            for entry in list(entries.values()):
                self.merge_service_call(
                    entry.type, entry.text, entry.total_duration_nanos, entry.execution_count
                )
        for entry in list(other._overflow.values()):
            self.merge_service_call(
                entry.type, entry.text, entry.total_duration_nanos, entry.execution_count
            )

    def to_wire(self) -> List[ServiceCallMessage]:
        return [
            ServiceCallMessage(
                type=entry.type,
                text=entry.text,
                total_duration_nanos=entry.total_duration_nanos,
                execution_count=entry.execution_count,
            )
            for entry in self.get_sorted_and_truncated_result()
        ]
