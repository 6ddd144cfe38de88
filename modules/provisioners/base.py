"""
Provisioner interface for infragraph.

A provisioner is the external collaborator that actually creates and deletes
infrastructure. The apply engine only sequences calls, records status and
propagates outputs; everything that talks to a cloud or cluster API lives
behind this interface. Provisioners may retry internally. The engine never
does.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class Provisioner(ABC):
    """Base class for provisioner implementations."""

    name = "base"

    @abstractmethod
    def apply_resource(
        self,
        resource_type: str,
        properties: Dict[str, Any],
        name: str,
        current_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a resource, or update it in place when current_id is given.

        Args:
            resource_type: Provider-qualified type, e.g. "gcp:container:Cluster"
            properties: Fully resolved properties
            name: Logical resource id from the stack
            current_id: Physical id of the existing resource for in-place updates

        Returns:
            Output values; must include the physical "id"

        Raises:
            ProviderError: If the provisioning call fails
        """

    @abstractmethod
    def destroy_resource(
        self, resource_id: str, resource_type: Optional[str] = None
    ) -> None:
        """
        Delete a resource by physical id.

        Args:
            resource_id: Physical id returned from apply_resource
            resource_type: Type hint for provisioners that dispatch by type

        Raises:
            ProviderError: If the deletion fails
        """
