"""
Configuration settings for the gradebook app.

These values can be overridden in Django settings by prefixing with GRADEBOOK_.
For example, to change the exam ceiling:
    GRADEBOOK_EXAM_MAX_SCORE = 60

All configuration values are lazily loaded to avoid Django setup issues.
"""
from decimal import Decimal


def _get_setting(name, default):
    """Get a gradebook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'GRADEBOOK_{name}', default)


# Define defaults as constants for direct use when Django settings are not needed
_DEFAULTS = {
    # Score bounds (continuous assessment + examination = 100)
    'CA_MAX_SCORE': Decimal('30'),
    'EXAM_MAX_SCORE': Decimal('70'),

    # Ordered highest band first; a score takes the first band whose
    # minimum it reaches.
    'GRADING_SCALE': [
        {'grade': 'A', 'min': Decimal('80'), 'remark': 'Excellent'},
        {'grade': 'B', 'min': Decimal('70'), 'remark': 'Very Good'},
        {'grade': 'C', 'min': Decimal('60'), 'remark': 'Good'},
        {'grade': 'D', 'min': Decimal('50'), 'remark': 'Fair'},
        {'grade': 'E', 'min': Decimal('40'), 'remark': 'Poor'},
        {'grade': 'F', 'min': Decimal('0'), 'remark': 'Fail'},
    ],
    'NO_GRADES_REMARK': 'No grades available',

    # Field limits
    'COMMENT_MAX_LENGTH': 200,
    'REJECTION_REASON_MAX_LENGTH': 255,

    # Bulk operation settings
    'BULK_UPDATE_BATCH_SIZE': 500,

    # Result generation
    'RESULT_GENERATION_MAX_WORKERS': 4,
    'RESULT_GENERATION_TIMEOUT': 300,  # seconds, whole class batch
    'COHORT_LOCK_TIMEOUT': 30,  # seconds
    'RESULT_GENERATION_ASYNC': False,

    # Celery task settings
    'TASK_MAX_RETRIES': 3,
    'TASK_RETRY_DELAY': 60,  # seconds
    'TASK_SOFT_TIME_LIMIT': 10 * 60,
    'TASK_TIME_LIMIT': 15 * 60,
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


# Module-level proxy object for attribute access
_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
