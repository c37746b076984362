"""Remote command execution on the deployed instance."""

from dataclasses import dataclass
from typing import Optional

from tierdeploy.utils.errors import ErrorContext, RemoteCommandError, error_handler
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError
from tierdeploy.utils.logging import get_logger


@dataclass
class CommandOutcome:
    """Result of one remote step."""
    description: str
    success: bool
    output: str = ''
    error: Optional[str] = None

    def raise_for_failure(self) -> None:
        """Convert a failed outcome into a RemoteCommandError."""
        if not self.success:
            raise RemoteCommandError(
                f"Remote step failed: {self.description}",
                context=ErrorContext(operation=self.description),
                suggestions=[
                    'Inspect the instance with: gcloud compute ssh <instance>',
                    'Re-run the phase once the cause is fixed',
                ],
            )


class RemoteExecutor:
    """Runs shell steps on one instance over gcloud compute ssh."""

    def __init__(self, client: GCloudClient, instance: str, zone: str):
        self.client = client
        self.instance = instance
        self.zone = zone
        self.logger = get_logger(__name__)

    def run(self, description: str, command: str) -> CommandOutcome:
        """Run one step and report the outcome instead of raising.

        Args:
            description: Short human label for the step
            command: Shell command run on the instance

        Returns:
            CommandOutcome with stdout on success or the categorized error
        """
        self.logger.info(f"Remote: {description}")
        try:
            output = self.client.ssh(self.instance, self.zone, command)
        except (GCloudCommandError, FileNotFoundError) as e:
            error = error_handler.handle_exception(
                e, ErrorContext(resource_id=self.instance, operation=description)
            )
            self.logger.debug(f"Remote step '{description}' failed: {error.message}")
            return CommandOutcome(description, False, error=error.message)
        return CommandOutcome(description, True, output=output or '')

    def upload(self, description: str, local_path: str, remote_path: str) -> CommandOutcome:
        """Copy a local file to the instance."""
        self.logger.info(f"Upload: {description}")
        try:
            self.client.scp(local_path, self.instance, remote_path, self.zone)
        except (GCloudCommandError, FileNotFoundError) as e:
            error = error_handler.handle_exception(
                e, ErrorContext(resource_id=self.instance, operation=description)
            )
            return CommandOutcome(description, False, error=error.message)
        return CommandOutcome(description, True)
