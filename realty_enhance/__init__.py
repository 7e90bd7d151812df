"""
Realty Photo Enhancement - Core Package
Batch upload of real-estate photos to the enhancement service,
with per-preset credit pricing and a cancellable sequential queue
"""
from .config import (
    get_config,
    Config,
    Preset,
    PresetInfo,
    ProcessingStatus,
)
from .presets import cost, total_cost, can_afford, preset_info, list_presets
from .records import (
    ImageRecord,
    ImageQueue,
    PreviewHandle,
    RecordError,
    InvalidTransitionError,
    RecordBusyError,
)
from .cancellation import CancellationToken, OperationCancelled, run_cancellable
from .enhance_client import (
    EnhanceClient,
    EnhanceResult,
    Enhancer,
    EnhanceError,
    NotAuthenticatedError,
    OutOfCreditsError,
    RateLimitedError,
    CreditStatus,
)
from .queue_controller import (
    EnhancementQueue,
    EnhancementSettings,
    CreditBalance,
    QueueState,
    BatchSignal,
    BatchOutcome,
    ItemStarted,
    ItemCompleted,
    ItemFailed,
    ItemCancelled,
    CreditsUpdated,
    BatchFinished,
)
from .logging_config import setup_logging

__version__ = "1.0.0"

__all__ = [
    # Config
    'get_config',
    'Config',
    'Preset',
    'PresetInfo',
    'ProcessingStatus',

    # Pricing
    'cost',
    'total_cost',
    'can_afford',
    'preset_info',
    'list_presets',

    # Records
    'ImageRecord',
    'ImageQueue',
    'PreviewHandle',
    'RecordError',
    'InvalidTransitionError',
    'RecordBusyError',

    # Cancellation
    'CancellationToken',
    'OperationCancelled',
    'run_cancellable',

    # Remote service
    'EnhanceClient',
    'EnhanceResult',
    'Enhancer',
    'EnhanceError',
    'NotAuthenticatedError',
    'OutOfCreditsError',
    'RateLimitedError',
    'CreditStatus',

    # Queue
    'EnhancementQueue',
    'EnhancementSettings',
    'CreditBalance',
    'QueueState',
    'BatchSignal',
    'BatchOutcome',
    'ItemStarted',
    'ItemCompleted',
    'ItemFailed',
    'ItemCancelled',
    'CreditsUpdated',
    'BatchFinished',

    # Logging
    'setup_logging',
]
