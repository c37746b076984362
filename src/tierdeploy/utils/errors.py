"""Error types and the handler that categorizes failures.

Every failure surfaced to the user is a DeploymentError carrying a category,
a severity, where it happened (ErrorContext) and suggested fixes. Raw
exceptions from gcloud or the OS are converted by ``error_handler`` at the
boundary where they are caught.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from tierdeploy.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during deployment."""
    PREREQUISITE = "prerequisite"
    COMPLIANCE = "compliance"
    RECONCILIATION = "reconciliation"
    STATE = "state"
    CONFIGURATION = "configuration"
    COMMAND = "command"
    PERMISSION = "permission"
    RESOURCE_LIMIT = "resource_limit"
    REMOTE = "remote"
    HEALTH = "health"
    CLEANUP = "cleanup"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """How far an error reaches."""
    CRITICAL = "critical"  # Nothing can run
    ERROR = "error"  # Phase failed, run aborts
    WARNING = "warning"  # Recorded, run continues
    INFO = "info"


@dataclass
class ErrorContext:
    """Where an error happened."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    phase: Optional[str] = None
    command: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class DeploymentError(Exception):
    """Base exception for deployment errors.

    Subclasses set ``default_category`` and ``default_severity``; both can
    still be overridden per instance.
    """

    default_category = ErrorCategory.UNKNOWN
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize deployment error.

        Args:
            message: Human-readable error message
            category: Error category (class default when omitted)
            severity: Error severity (class default when omitted)
            context: Where the error happened
            cause: Original exception
            suggestions: Suggested fixes, most useful first
        """
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.severity = severity or self.default_severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = list(suggestions or [])

    def to_user_message(self) -> str:
        """Multi-line message for the terminal."""
        lines = [f"❌ {self.severity.value.upper()}: {self.message}"]
        for label, value in (
            ("Phase", self.context.phase),
            ("Resource", self.context.resource_id),
            ("Operation", self.context.operation),
            ("Cause", self.cause),
        ):
            if value:
                lines.append(f"   {label}: {value}")

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            lines.extend(f"   {i}. {s}" for i, s in enumerate(self.suggestions, 1))
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for the JSON log."""
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': asdict(self.context),
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions,
        }


class PrerequisiteError(DeploymentError):
    """Local tooling or authentication is missing."""
    default_category = ErrorCategory.PREREQUISITE
    default_severity = ErrorSeverity.CRITICAL


class ComplianceError(DeploymentError):
    """One or more HARD compliance rules failed."""
    default_category = ErrorCategory.COMPLIANCE
    default_severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str, failures: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.failures = failures or []


class ReconciliationError(DeploymentError):
    """A required resource could not be reconciled."""
    default_category = ErrorCategory.RECONCILIATION


class StateError(DeploymentError):
    """A state file is missing, unreadable or of the wrong type."""
    default_category = ErrorCategory.STATE
    default_severity = ErrorSeverity.CRITICAL


class MissingStateError(StateError):
    """A phase needs a state record that has not been written yet."""

    def __init__(
        self,
        key: str,
        required_by: Optional[str] = None,
        produced_by: Optional[str] = None,
        **kwargs
    ):
        message = f"Missing deployment state '{key}'"
        if required_by:
            message += f" required by phase '{required_by}'"
        if produced_by and not kwargs.get('suggestions'):
            kwargs['suggestions'] = [f"Run phase '{produced_by}' first, which produces '{key}'"]
        super().__init__(message, **kwargs)
        self.key = key
        self.required_by = required_by
        self.produced_by = produced_by


class ConfigurationError(DeploymentError):
    """Invalid configuration or command-line selection."""
    default_category = ErrorCategory.CONFIGURATION
    default_severity = ErrorSeverity.CRITICAL


class RemoteCommandError(DeploymentError):
    """A command run on the instance over SSH failed."""
    default_category = ErrorCategory.REMOTE


class HealthCheckError(DeploymentError):
    """A critical post-deploy check failed."""
    default_category = ErrorCategory.HEALTH

    def __init__(self, message: str, failed_checks: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.failed_checks = failed_checks or []


class BestEffortWarning(DeploymentError):
    """A failure that is recorded and reported but never aborts."""
    default_category = ErrorCategory.CLEANUP
    default_severity = ErrorSeverity.WARNING


class GCloudErrorRule(NamedTuple):
    """Maps a marker in gcloud stderr to a category and advice."""
    marker: str
    category: ErrorCategory
    message: str
    suggestions: List[str]


class ErrorHandler:
    """Converts raw exceptions into categorized DeploymentErrors."""

    # First matching marker wins
    GCLOUD_ERROR_MAPPING = [
        GCloudErrorRule('PERMISSION_DENIED', ErrorCategory.PERMISSION, 'Permission denied', [
            'Check the IAM roles granted to the active account',
            'Verify the account with: gcloud auth list',
        ]),
        GCloudErrorRule('UNAUTHENTICATED', ErrorCategory.PREREQUISITE,
                        'Not authenticated with Google Cloud', [
                            'Authenticate with: gcloud auth login',
                        ]),
        GCloudErrorRule('SERVICE_DISABLED', ErrorCategory.PREREQUISITE,
                        'A required API is not enabled', [
                            'Run phase 1 (predeploy) to enable the required APIs',
                            'Enable it manually with: gcloud services enable <api>',
                        ]),
        GCloudErrorRule('QUOTA_EXCEEDED', ErrorCategory.RESOURCE_LIMIT, 'Project quota exceeded', [
            'Review quotas in the Cloud Console',
            'Delete unused resources in the project',
        ]),
        GCloudErrorRule('RESOURCE_EXHAUSTED', ErrorCategory.RESOURCE_LIMIT,
                        'Zone resources exhausted', [
                            'Retry later or choose another zone in an allowed region',
                        ]),
        GCloudErrorRule('resourceInUseByAnotherResource', ErrorCategory.RECONCILIATION,
                        'Resource is still in use', [
                            'Delete dependent resources first',
                            'Wait for pending operations to finish and retry',
                        ]),
        GCloudErrorRule('ALREADY_EXISTS', ErrorCategory.RECONCILIATION, 'Resource already exists', [
            'Re-run the phase; existing resources are detected and reused',
        ]),
        GCloudErrorRule('NOT_FOUND', ErrorCategory.RECONCILIATION, 'Resource not found', [
            'Check that the project and zone are correct',
            'Check whether the resource was deleted manually',
        ]),
    ]

    def __init__(self):
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> DeploymentError:
        """Convert an exception to a DeploymentError.

        DeploymentErrors pass through unchanged.

        Args:
            error: The exception to handle
            context: Where the error occurred

        Returns:
            DeploymentError with categorization and suggestions
        """
        if isinstance(error, DeploymentError):
            return error

        context = context or ErrorContext()

        # Imported here, gcloud imports this module
        from tierdeploy.utils.gcloud import GCloudCommandError

        if isinstance(error, GCloudCommandError):
            return self._handle_gcloud_error(error, context)

        if isinstance(error, FileNotFoundError):
            return PrerequisiteError(
                f'Executable not found: {error.filename or error}',
                context=context,
                cause=error,
                suggestions=['Install the Google Cloud SDK and make sure gcloud is on PATH'],
            )

        return DeploymentError(
            str(error) or type(error).__name__,
            context=context,
            cause=error,
            suggestions=['Check the log file for more details'],
        )

    def _handle_gcloud_error(self, error, context: ErrorContext) -> DeploymentError:
        """Categorize a failed gcloud invocation by its stderr."""
        context.command = error.command_line
        detail = error.summary()

        for rule in self.GCLOUD_ERROR_MAPPING:
            if rule.marker in error.stderr:
                return DeploymentError(
                    f"{rule.message}: {detail}",
                    category=rule.category,
                    context=context,
                    cause=error,
                    suggestions=rule.suggestions,
                )

        return DeploymentError(
            f"gcloud failed (exit {error.returncode}): {detail}",
            category=ErrorCategory.COMMAND,
            context=context,
            cause=error,
            suggestions=[f'Re-run the command manually to inspect the output: {error.command_line}'],
        )

    def log_error(self, error: DeploymentError) -> None:
        """Log the user message at the error's severity and the details at DEBUG."""
        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(error.to_user_message())
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(error.to_user_message())
        else:
            self.logger.info(error.to_user_message())
        self.logger.debug(f"Error details: {error.to_dict()}")


error_handler = ErrorHandler()
