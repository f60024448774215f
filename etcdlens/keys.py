"""Mapping of Kubernetes group-resources to etcd storage key paths."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GroupResource:
    """An API group together with a resource name."""

    group: str = ""
    resource: str = ""

    def is_empty(self) -> bool:
        """Return True when both group and resource are empty."""
        return not self.group and not self.resource


# Prefixes compiled into the Kubernetes API server for some built-in resources.
_SPECIAL_DEFAULT_RESOURCE_PREFIXES = {
    GroupResource("", "replicationcontrollers"): "controllers",
    GroupResource("", "endpoints"): "services/endpoints",
    GroupResource("", "nodes"): "minions",
    GroupResource("", "services"): "services/specs",
    GroupResource("extensions", "ingresses"): "ingress",
    GroupResource("networking.k8s.io", "ingresses"): "ingress",
}

_SPECIAL_DEFAULT_MEDIA_TYPE_GROUPS = frozenset({"apiextensions.k8s.io", "apiregistration.k8s.io"})


def parse_group_resource(text: str) -> GroupResource:
    """Parse 'resource' or 'resource.group' into a GroupResource."""
    resource, dot, group = text.partition(".")
    if not dot:
        return GroupResource(resource=text)
    return GroupResource(group=group, resource=resource)


def prefix_from_gr(gr: GroupResource) -> str:
    """Return the storage key prefix of a group-resource."""
    if not gr.resource:
        raise ValueError("resource is empty")

    special = _SPECIAL_DEFAULT_RESOURCE_PREFIXES.get(gr)
    if special is not None:
        return special

    if gr.group in _SPECIAL_DEFAULT_MEDIA_TYPE_GROUPS:
        return f"{gr.group}/{gr.resource}"

    if not gr.group or "." not in gr.group:
        return gr.resource

    # Custom resources in a *.k8s.io group would be misplaced here.
    if gr.group.endswith(".k8s.io"):
        return gr.resource

    return f"{gr.group}/{gr.resource}"


def get_prefix(
    prefix: str, gr: GroupResource, name: str = "", namespace: str = ""
) -> tuple[str, bool]:
    """Return the key path for the target and whether it names a single object."""
    parts = [prefix]
    single = False

    if gr.is_empty():
        if namespace or name:
            raise ValueError("namespace and name must be omitted if there is no GroupResource")
    else:
        parts.append(prefix_from_gr(gr))
        if namespace:
            parts.append(namespace)
        if name:
            parts.append(name)
            single = True

    if not single:
        parts.append("")
    return "/".join(parts), single