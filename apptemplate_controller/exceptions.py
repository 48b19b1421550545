"""Custom exceptions for the AppTemplate controller with troubleshooting guidance."""

from typing import List, Optional


class AppTemplateControllerError(Exception):
    """Base exception for all AppTemplate controller errors."""

    def __init__(self, message: str, troubleshooting: Optional[List[str]] = None):
        """Initialize exception with message and optional troubleshooting steps.

        Args:
            message: Error message describing what went wrong
            troubleshooting: List of troubleshooting suggestions
        """
        self.message = message
        self.troubleshooting = troubleshooting or []
        super().__init__(self.message)

    def get_troubleshooting_text(self) -> str:
        """Get formatted troubleshooting text.

        Returns:
            Formatted string with troubleshooting steps
        """
        if not self.troubleshooting:
            return ""

        lines = ["Troubleshooting:"]
        for step in self.troubleshooting:
            lines.append(f"• {step}")
        return "\n".join(lines)


class ClusterAccessError(AppTemplateControllerError):
    """Raised when the Kubernetes client cannot be configured."""

    def __init__(self, message: str = "Cannot access Kubernetes cluster"):
        troubleshooting = [
            "Verify kubectl is configured: kubectl cluster-info",
            "Check kubeconfig file: kubectl config view",
            "When running in a pod, check the service account token is mounted",
            "Ensure you have valid credentials: kubectl auth whoami",
        ]
        super().__init__(message, troubleshooting)


class ConfigurationError(AppTemplateControllerError):
    """Raised when controller configuration is invalid or missing."""

    def __init__(self, message: str, config_path: Optional[str] = None):
        self.config_path = config_path
        troubleshooting = [
            "Check configuration file format (YAML mapping)",
            "Verify numeric settings such as WATCH_RETRY_DELAY are numbers",
            "VARIABLE_POLICY must be 'permissive' or 'strict'",
        ]

        if config_path:
            troubleshooting.insert(0, f"Check configuration file: cat {config_path}")

        super().__init__(message, troubleshooting)


class InvalidAppTemplateError(AppTemplateControllerError):
    """Raised when an AppTemplate object lacks required fields."""

    def __init__(self, message: str):
        troubleshooting = [
            "Every AppTemplate needs spec.serviceName",
            "Inspect the object: kubectl get apptemplates -A -o yaml",
        ]
        super().__init__(message, troubleshooting)


class MalformedVariablesError(AppTemplateControllerError):
    """Raised when templateVariables is not a structured mapping."""

    def __init__(self, reason: str):
        message = f"templateVariables is not valid structured data: {reason}"
        troubleshooting = [
            'templateVariables must be a JSON or YAML mapping, e.g. \'{"replicas": "2"}\'',
            "Check quoting of the serialized payload in the AppTemplate manifest",
        ]
        super().__init__(message, troubleshooting)


class ConfigurationCollectionError(AppTemplateControllerError):
    """Raised when a bundle directory cannot be listed."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        message = f"Cannot list bundle directory '{path}'"
        if reason:
            message += f": {reason}"
        troubleshooting = [
            f"Check the directory exists and is readable: ls -la {path}",
            "Verify CONFIGS_DIR points at the bundle root",
        ]
        super().__init__(message, troubleshooting)


class RenderError(AppTemplateControllerError):
    """Raised when a template file cannot be rendered."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        message = f"Failed to render template '{path}'"
        if reason:
            message += f": {reason}"
        troubleshooting = [
            f"Check the file is readable UTF-8 text: file {path}",
        ]
        super().__init__(message, troubleshooting)


class UnresolvedVariableError(RenderError):
    """Raised under the strict variable policy when placeholders stay unresolved."""

    def __init__(self, path: str, missing: List[str]):
        self.missing = sorted(missing)
        super().__init__(path, "unresolved variables: " + ", ".join(self.missing))
        self.troubleshooting = [
            "Add the missing names to spec.templateVariables",
            "Or set VARIABLE_POLICY=permissive to leave placeholders verbatim",
        ]


class ParseError(AppTemplateControllerError):
    """Raised when a rendered YAML sub-document cannot be parsed."""


class ApplyError(AppTemplateControllerError):
    """Raised when a resource cannot be read, created or patched."""

    def __init__(self, resource: str, operation: str, reason: str = ""):
        self.resource = resource
        self.operation = operation
        message = f"Failed to {operation} {resource}"
        if reason:
            message += f": {reason}"
        troubleshooting = [
            f"Verify permissions: kubectl auth can-i {operation} <resource>",
            "Validate the rendered manifest: apptemplate-controller render <file> --show-content",
        ]
        super().__init__(message, troubleshooting)


class KubernetesAPIError(AppTemplateControllerError):
    """Raised when Kubernetes API operations fail."""

    def __init__(self, message: str, status: Optional[int] = None, resource: Optional[str] = None,
                 operation: Optional[str] = None):
        self.status = status
        self.resource = resource
        self.operation = operation

        troubleshooting = [
            "Verify cluster connectivity: kubectl cluster-info",
            "Check API server status: kubectl get --raw /healthz",
            "Verify RBAC permissions: kubectl auth can-i <verb> <resource>",
        ]

        if resource and operation:
            troubleshooting.insert(0, f"Verify permissions for {operation} on {resource}")

        super().__init__(message, troubleshooting)


class ResourceNotFoundError(KubernetesAPIError):
    """Raised when a Kubernetes resource does not exist."""

    def __init__(self, kind: str, name: str, namespace: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        message = f"{kind} '{name}' not found"
        if namespace:
            message += f" in namespace '{namespace}'"
        super().__init__(message, status=404, resource=kind, operation="get")


def handle_kubernetes_api_exception(e: Exception, operation: str = "operation",
                                    resource: Optional[str] = None) -> AppTemplateControllerError:
    """Convert Kubernetes API exceptions to custom exceptions with context.

    Args:
        e: The original exception
        operation: Description of the operation being performed
        resource: Description of the Kubernetes resource involved

    Returns:
        Appropriate custom exception with troubleshooting guidance
    """
    from kubernetes.client.rest import ApiException

    if isinstance(e, ApiException):
        status = e.status or 0
        if status == 404:
            return KubernetesAPIError(f"Resource not found during {operation}", 404, resource, operation)
        elif status in (401, 403):
            return KubernetesAPIError(
                f"Insufficient permissions to {operation} (status: {status})", status, resource, operation
            )
        elif status == 409:
            return KubernetesAPIError(
                f"Resource conflict during {operation} - resource may already exist", status, resource, operation
            )
        elif status == 422:
            return KubernetesAPIError(
                f"Invalid resource specification during {operation}: {e.reason}", status, resource, operation
            )
        elif status >= 500:
            return KubernetesAPIError(
                f"Kubernetes API server error during {operation}: {e.reason}", status, resource, operation
            )
        else:
            return KubernetesAPIError(
                f"API error during {operation}: {e.reason} (status: {status})", status, resource, operation
            )

    return KubernetesAPIError(f"Unexpected error during {operation}: {str(e)}", None, resource, operation)
