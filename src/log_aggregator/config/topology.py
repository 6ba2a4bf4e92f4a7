"""
Static deployment topology.

Describes the front-door resources that write into the landing store.
Network layout, certificates and DNS have no runtime behavior in the
pipeline; they are kept here only as an immutable record consumed once at
startup, mainly to derive the resource type map.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class Topology:
    """
    Immutable description of the resources producing access logs.

    Attributes:
        service_name: Prefix used for every resource name
        alb_name: Name of the application load balancer
        nlb_name: Name of the network load balancer
        instance_name: Name of the directly exposed instance
        distribution_name: Name of the CDN distribution
        hosted_zone_name: DNS zone of the service (informational)
        cidr: VPC CIDR block (informational)
        availability_zones: Zones the service spans (informational)
    """

    service_name: str
    alb_name: Optional[str] = None
    nlb_name: Optional[str] = None
    instance_name: Optional[str] = None
    distribution_name: Optional[str] = None
    hosted_zone_name: str = ""
    cidr: str = "10.0.0.0/16"
    availability_zones: tuple[str, ...] = field(default_factory=tuple)

    def domain_names(self) -> dict[str, str]:
        """Return the public domain names of each endpoint, keyed by kind."""
        if not self.hosted_zone_name:
            return {}
        return {
            "alb": f"{self.service_name}-alb.{self.hosted_zone_name}",
            "nlb": f"{self.service_name}-nlb.{self.hosted_zone_name}",
            "cf": f"{self.service_name}-cf.{self.hosted_zone_name}",
        }

    def resource_pairs(self) -> list[tuple[str, str]]:
        """
        Return (resource_name, format_kind) pairs for every declared resource.

        The instance ships Apache logs through an agent, so it maps to clf.
        """
        pairs = []
        if self.alb_name:
            pairs.append((self.alb_name, "alb"))
        if self.nlb_name:
            pairs.append((self.nlb_name, "nlb"))
        if self.instance_name:
            pairs.append((self.instance_name, "clf"))
        if self.distribution_name:
            pairs.append((self.distribution_name, "cf"))
        return pairs

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Topology":
        """Create from a `topology:` configuration block."""
        service_name = config.get("service_name")
        if not service_name:
            raise ConfigurationError(
                "topology.service_name is required", setting="topology.service_name"
            )
        return cls(
            service_name=service_name,
            alb_name=config.get("alb_name"),
            nlb_name=config.get("nlb_name"),
            instance_name=config.get("instance_name"),
            distribution_name=config.get("distribution_name"),
            hosted_zone_name=config.get("hosted_zone_name", ""),
            cidr=config.get("cidr", "10.0.0.0/16"),
            availability_zones=tuple(config.get("availability_zones", ())),
        )
