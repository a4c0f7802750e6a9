"""
Custom Exception Classes for the skillmatch engine
"""
from typing import Dict, Any


class SkillMatchError(Exception):
    """Base exception for the matching and trend engine"""
    
    def __init__(
        self, 
        message: str, 
        error_code: str = None,
        details: Dict[str, Any] = None,
        cause: Exception = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/response"""
        result = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class ValidationError(SkillMatchError):
    """Raised when input is malformed or out of range"""
    
    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if field:
            details['field'] = field
        if value is not None:
            details['invalid_value'] = str(value)
        super().__init__(message, error_code="VALIDATION_ERROR", details=details, **kwargs)


class NotFoundError(SkillMatchError):
    """Raised when an entity or candidate reference cannot be resolved"""
    
    def __init__(self, message: str, entity_id: str = None, entity_kind: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if entity_id:
            details['entity_id'] = entity_id
        if entity_kind:
            details['entity_kind'] = entity_kind
        super().__init__(message, error_code="NOT_FOUND", details=details, **kwargs)


class ComputationError(SkillMatchError):
    """Raised when a score cannot be computed (NaN, degenerate division, ...)"""
    
    def __init__(self, message: str, entity_id: str = None, phase: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if entity_id:
            details['entity_id'] = entity_id
        if phase:
            details['phase'] = phase
        kwargs.setdefault('error_code', "COMPUTATION_ERROR")
        super().__init__(message, details=details, **kwargs)

    @property
    def entity_id(self):
        return self.details.get('entity_id')

    @property
    def phase(self):
        return self.details.get('phase')


class FeedUnavailableError(ComputationError):
    """Raised when a batch cannot read any input at all. Fatal for the run."""
    
    def __init__(self, message: str, source: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if source:
            details['source'] = source
        super().__init__(
            message, phase=kwargs.pop('phase', "load"), details=details,
            error_code="FEED_UNAVAILABLE", **kwargs
        )


class PersistenceError(SkillMatchError):
    """Raised when a trend record cannot be written"""
    
    def __init__(self, message: str, operation: str = None, collection: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if operation:
            details['operation'] = operation
        if collection:
            details['collection'] = collection
        super().__init__(message, error_code="PERSISTENCE_ERROR", details=details, **kwargs)


class ConfigurationError(SkillMatchError):
    """Raised when configuration is invalid or missing"""
    
    def __init__(self, message: str, config_key: str = None, config_value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if config_key:
            details['config_key'] = config_key
        if config_value is not None:
            details['config_value'] = str(config_value)
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details, **kwargs)


class BatchPartialFailure(SkillMatchError):
    """Aggregate report of a trend run in which some entities failed"""
    
    def __init__(self, summary, **kwargs):
        self.summary = summary
        details = kwargs.pop('details', {})
        details['succeeded'] = summary.succeeded
        details['failed'] = summary.failed
        details['errors'] = [error.model_dump() for error in summary.errors]
        super().__init__(
            f"Trend run finished with {summary.failed} failed entit"
            f"{'y' if summary.failed == 1 else 'ies'}",
            error_code="BATCH_PARTIAL_FAILURE", details=details, **kwargs
        )


# HTTP status mapping for host request handlers
def http_status_for(exc: SkillMatchError) -> int:
    """Map engine exceptions to the HTTP status a handler should answer with"""
    
    status_code_mapping = {
        ValidationError: 400,
        ConfigurationError: 400,
        NotFoundError: 404,
        ComputationError: 500,
        FeedUnavailableError: 503,
        PersistenceError: 502,
        BatchPartialFailure: 500,
    }
    
    return status_code_mapping.get(type(exc), 500)


# Exception context manager for better error handling
class ExceptionContext:
    """Context manager for handling exceptions with additional context"""
    
    def __init__(self, operation: str, logger=None, wrap_input_errors: bool = True, **context):
        self.operation = operation
        self.logger = logger
        self.wrap_input_errors = wrap_input_errors
        self.context = context
    
    def __enter__(self):
        if self.logger:
            self.logger.debug(f"Starting operation: {self.operation}", extra=self.context)
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            if self.logger:
                self.logger.error(
                    f"Operation failed: {self.operation} - {exc_val}", 
                    extra={**self.context, "exception_type": exc_type.__name__}
                )
            
            # Re-raise engine exceptions as-is
            if isinstance(exc_val, SkillMatchError):
                return False

            if not isinstance(exc_val, Exception):
                return False
            
            # Wrap other exceptions
            if self.wrap_input_errors and isinstance(exc_val, (KeyError, ValueError, TypeError)):
                wrapped_exc = ValidationError(
                    f"Validation error in {self.operation}: {str(exc_val)}",
                    details=dict(self.context),
                    cause=exc_val
                )
                raise wrapped_exc from exc_val
            else:
                wrapped_exc = ComputationError(
                    f"Computation error in {self.operation}: {str(exc_val)}",
                    entity_id=self.context.get("entity_id"),
                    phase=self.context.get("phase", self.operation),
                    cause=exc_val
                )
                raise wrapped_exc from exc_val
        else:
            if self.logger:
                self.logger.debug(f"Operation completed: {self.operation}", extra=self.context)
        
        return False
