"""Services package."""

from app.services.encryption_service import EncryptionService
from app.services.provider_service import ProviderService
from app.services.routing_service import RoutingService, RoutePlan, RouteTarget
from app.services.knowledge_service import KnowledgeContextInjector, AugmentedPrompt
from app.services.failover_service import FailoverOrchestrator, FailoverResult
from app.services.usage_service import UsageTelemetryRecorder, UsageOutcome
from app.services.conversation_service import ConversationService
from app.services.streaming_service import StreamingSessionController, ChatStreamRequest, SessionState
from app.services.catalog_sync_service import CatalogSyncService
from app.services.health_service import HealthCheckService

__all__ = [
    "EncryptionService",
    "ProviderService",
    "RoutingService",
    "RoutePlan",
    "RouteTarget",
    "KnowledgeContextInjector",
    "AugmentedPrompt",
    "FailoverOrchestrator",
    "FailoverResult",
    "UsageTelemetryRecorder",
    "UsageOutcome",
    "ConversationService",
    "StreamingSessionController",
    "ChatStreamRequest",
    "SessionState",
    "CatalogSyncService",
    "HealthCheckService",
]
