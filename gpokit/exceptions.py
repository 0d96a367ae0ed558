"""
Custom exceptions for gpokit with helpful error messages.
"""


class GpoKitError(Exception):
    """Base exception for gpokit errors."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class WorkspaceError(GpoKitError):
    """Errors related to workspace management."""

    pass


class WorkspaceNotFoundError(WorkspaceError):
    """Workspace not found or not initialized."""

    def __init__(self, path: str = None):
        message = "Not in a gpokit workspace."
        if path:
            message = f"No gpokit workspace found at: {path}"

        suggestion = (
            "Initialize a new workspace with:\n"
            "  gpokit init <workspace-dir>\n\n"
            "Or navigate to an existing workspace directory."
        )
        super().__init__(message, suggestion)


class ConfigurationError(GpoKitError):
    """Configuration file errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Configuration file is invalid."""

    def __init__(self, error_details: str):
        message = f"Invalid configuration file: {error_details}"

        suggestion = (
            "Fix the gpokit.yaml file.\n"
            "You can regenerate the default configuration:\n"
            "  mv gpokit.yaml gpokit.yaml.backup\n"
            "  gpokit init .\n\n"
            "Then merge your settings back from the backup."
        )
        super().__init__(message, suggestion)


class DomainIdentityMissingError(ConfigurationError):
    """Neither the config nor the provider could supply a domain identity."""

    def __init__(self, section: str):
        message = f"Domain identity '{section}' is not configured."
        suggestion = (
            f"Add the '{section}' section to gpokit.yaml:\n"
            f"  {section}:\n"
            "    server_fqdn: dc01.contoso.com\n"
            "    dns_domain: contoso.com\n"
            "    netbios_name: CONTOSO"
        )
        super().__init__(message, suggestion)


class BackupError(GpoKitError):
    """Errors related to GPO backup folders."""

    pass


class BackupNotFoundError(BackupError):
    """No backups found where some were expected."""

    def __init__(self, path: str):
        message = f"No GPO backups found in: {path}"
        suggestion = "Create backups first with:\n  gpokit backup"
        super().__init__(message, suggestion)


class InvalidBackupError(BackupError):
    """A backup folder is missing or has malformed manifest files."""

    def __init__(self, path: str, details: str):
        message = f"Invalid GPO backup at {path}: {details}"
        suggestion = (
            "A GPO backup folder must contain bkupInfo.xml and Backup.xml.\n"
            "Re-run the backup or remove the incomplete folder."
        )
        super().__init__(message, suggestion)


class GeneralizationError(GpoKitError):
    """Errors while replacing domain tokens."""

    pass


class TokenConflictError(GeneralizationError):
    """Input already contains one of the placeholder tokens."""

    def __init__(self, tokens: list[str], file_path: str = None):
        token_list = ", ".join(repr(t) for t in tokens)
        message = f"Input already contains placeholder token(s): {token_list}"
        if file_path:
            message = f"{file_path} already contains placeholder token(s): {token_list}"

        suggestion = (
            "Choose placeholder values that cannot appear in real policy data.\n"
            "Edit the 'generic' section of gpokit.yaml."
        )
        super().__init__(message, suggestion)


class RoundTripError(GeneralizationError):
    """Generalized output would not specialize back to the original."""

    def __init__(self, file_path: str = None):
        message = "Generalized content does not convert back to the original."
        if file_path:
            message = f"Generalized content of {file_path} does not convert back to the original."

        suggestion = (
            "A replacement produced text that collides with another placeholder.\n"
            "Use placeholder values that do not share prefixes or suffixes with\n"
            "the real domain names."
        )
        super().__init__(message, suggestion)


class PolFormatError(GpoKitError):
    """registry.pol content is malformed."""

    def __init__(self, details: str, offset: int = None, file_path: str = None):
        self.details = details
        self.offset = offset
        message = f"Malformed registry.pol data: {details}"
        if offset is not None:
            message += f" (at byte {offset})"
        if file_path:
            message = f"{file_path}: {message}"
        super().__init__(message)


class ArchiveError(GpoKitError):
    """Errors related to backup archives."""

    pass


class ManifestError(ArchiveError):
    """Archive manifest is missing or invalid."""

    def __init__(self, archive_path: str, details: str):
        message = f"Invalid archive manifest in {archive_path}: {details}"
        suggestion = "Only archives created with 'gpokit export' can be imported."
        super().__init__(message, suggestion)


class ChecksumMismatchError(ArchiveError):
    """Extracted file does not match the checksum recorded in the manifest."""

    def __init__(self, member: str, expected: str, actual: str):
        message = f"Checksum mismatch for {member}: expected {expected}, got {actual}"
        suggestion = "The archive is corrupt or was modified after export."
        super().__init__(message, suggestion)


class UnsafeArchiveMemberError(ArchiveError):
    """Archive member would extract outside the destination directory."""

    def __init__(self, member: str):
        super().__init__(f"Refusing to extract unsafe archive member: {member}")


class ProviderError(GpoKitError):
    """Errors related to Group Policy provider operations."""

    pass


class ProviderNotAvailableError(ProviderError):
    """Provider cannot run on this host."""

    def __init__(self, provider_name: str, details: str = None):
        message = f"Group Policy provider '{provider_name}' is not available."
        if details:
            message += f" {details}"

        suggestion = (
            "Run gpokit on a Windows host with the GroupPolicy RSAT module installed,\n"
            "or set provider.executable in gpokit.yaml to a PowerShell binary.\n\n"
            "Use the mock provider for offline work:\n"
            "  provider:\n"
            "    name: mock"
        )
        super().__init__(message, suggestion)


class ProviderCommandError(ProviderError):
    """A provider command failed."""

    def __init__(self, operation: str, error_message: str, retry_count: int = 0):
        self.operation = operation
        self.error_message = error_message
        self.retry_count = retry_count
        message = f"{operation} failed: {error_message}"

        if retry_count > 0:
            message += f" (after {retry_count} retries)"

        super().__init__(message)


class GPONotFoundError(ProviderError):
    """GPO not found in the domain."""

    def __init__(self, identifier: str):
        super().__init__(f"GPO not found: {identifier}")


class RetryableError(GpoKitError):
    """Error that should be retried."""

    def __init__(self, original_error: Exception, attempt: int, max_attempts: int):
        self.original_error = original_error
        self.attempt = attempt
        self.max_attempts = max_attempts

        message = f"Operation failed (attempt {attempt}/{max_attempts}): " f"{str(original_error)}"
        super().__init__(message)


def format_error_for_cli(error: Exception) -> str:
    """
    Format an exception for CLI display with helpful information.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, GpoKitError):
        output = f"[red]Error:[/red] {error.message}"
        if error.suggestion:
            output += f"\n\n[yellow]{error.suggestion}[/yellow]"
        return output
    else:
        return f"[red]Error:[/red] {str(error)}"
