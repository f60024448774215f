import pytest

from etcdlens.keys import GroupResource, get_prefix, parse_group_resource, prefix_from_gr


@pytest.mark.parametrize(
    "gr, expected",
    [
        (GroupResource("", "pods"), "pods"),
        (GroupResource("apps", "deployments"), "deployments"),
        (GroupResource("", "services"), "services/specs"),
        (GroupResource("networking.k8s.io", "ingresses"), "ingress"),
        (
            GroupResource("apiextensions.k8s.io", "customresourcedefinitions"),
            "apiextensions.k8s.io/customresourcedefinitions",
        ),
        (GroupResource("scheduling.k8s.io", "priorityclasses"), "priorityclasses"),
        (GroupResource("auger.x-k8s.io", "foo"), "auger.x-k8s.io/foo"),
    ],
    ids=[
        "pod",
        "deployment",
        "service",
        "ingress",
        "apiextensions.k8s.io",
        "scheduling.k8s.io",
        "x-k8s.io",
    ],
)
def test_prefix_from_gr(gr, expected):
    assert prefix_from_gr(gr) == expected


def test_prefix_from_gr_requires_resource():
    with pytest.raises(ValueError, match="resource is empty"):
        prefix_from_gr(GroupResource("apps", ""))


@pytest.mark.parametrize(
    "prefix, gr, name, namespace, want_path, want_single",
    [
        ("/registry", GroupResource(), "", "", "/registry/", False),
        ("/registry", GroupResource("", "pods"), "pod", "default", "/registry/pods/default/pod", True),
        ("/registry", GroupResource("", "pods"), "", "default", "/registry/pods/default/", False),
        ("/registry", GroupResource("", "nodes"), "node", "", "/registry/minions/node", True),
        ("/registry", GroupResource("", "nodes"), "", "", "/registry/minions/", False),
        ("/registry", GroupResource("auger.x-k8s.io", "foo"), "", "", "/registry/auger.x-k8s.io/foo/", False),
        (
            "/registry",
            GroupResource("apiregistration.k8s.io", "apiservices"),
            "v1.apps",
            "",
            "/registry/apiregistration.k8s.io/apiservices/v1.apps",
            True,
        ),
    ],
    ids=["all", "single pod", "pods", "single node", "nodes", "cr", "apiservices v1.apps"],
)
def test_get_prefix(prefix, gr, name, namespace, want_path, want_single):
    assert get_prefix(prefix, gr, name, namespace) == (want_path, want_single)


@pytest.mark.parametrize("name, namespace", [("pod", ""), ("", "default"), ("pod", "default")])
def test_get_prefix_rejects_name_without_resource(name, namespace):
    with pytest.raises(ValueError, match="must be omitted"):
        get_prefix("/registry", GroupResource(), name, namespace)


def test_get_prefix_propagates_empty_resource():
    with pytest.raises(ValueError, match="resource is empty"):
        get_prefix("/registry", GroupResource("apps", ""), "", "")


def test_parse_group_resource_with_group():
    gr = parse_group_resource("apiservices.apiregistration.k8s.io")
    assert gr == GroupResource("apiregistration.k8s.io", "apiservices")


def test_parse_group_resource_plain():
    assert parse_group_resource("services") == GroupResource("", "services")


def test_parse_group_resource_feeds_prefix():
    gr = parse_group_resource("apiservices.apiregistration.k8s.io")
    assert get_prefix("/registry", gr, "v1.apps", "") == (
        "/registry/apiregistration.k8s.io/apiservices/v1.apps",
        True,
    )


def test_group_resource_is_empty():
    assert GroupResource().is_empty() is True
    assert GroupResource("", "pods").is_empty() is False
    assert parse_group_resource("").is_empty() is True