"""Tests for host mapping parsing."""

import pytest

from fleetdeploy.errors import UnreadableFileError
from fleetdeploy.hosts import (
    external_names,
    format_host_mapping,
    load_host_mapping,
    parse_host_mapping,
)
from fleetdeploy.models import HostIdentity

MAPPING = """\
# broker hosts
ec2-b.amazonaws.com=ip-10-0-0-2.internal
ec2-a.amazonaws.com
ec2-c.amazonaws.com =

! also a comment
ec2-d.amazonaws.com = ip-10-0-0-4.internal
"""


def test_parse_preserves_order_and_defaults_internal_name():
    hosts = parse_host_mapping(MAPPING)

    assert hosts == [
        HostIdentity("ec2-b.amazonaws.com", "ip-10-0-0-2.internal"),
        HostIdentity("ec2-a.amazonaws.com", "ec2-a.amazonaws.com"),
        HostIdentity("ec2-c.amazonaws.com", "ec2-c.amazonaws.com"),
        HostIdentity("ec2-d.amazonaws.com", "ip-10-0-0-4.internal"),
    ]


def test_missing_internal_name_equals_external_name():
    for host in parse_host_mapping("a\nb=\nc =  \n"):
        assert host.internal_name == host.external_name


def test_duplicates_are_kept():
    hosts = parse_host_mapping("a=x\na=x\n")
    assert len(hosts) == 2
    assert hosts[0] == hosts[1]


def test_format_then_parse_gives_same_list():
    hosts = parse_host_mapping(MAPPING)
    assert parse_host_mapping(format_host_mapping(hosts)) == hosts


def test_format_omits_internal_name_when_equal():
    text = format_host_mapping([HostIdentity("a", "a"), HostIdentity("b", "c")])
    assert text == "a\nb=c\n"


def test_host_identity_is_immutable():
    host = HostIdentity("a", "b")
    with pytest.raises(AttributeError):
        host.internal_name = "c"


def test_external_names():
    assert external_names(parse_host_mapping(MAPPING))[:2] == [
        "ec2-b.amazonaws.com",
        "ec2-a.amazonaws.com",
    ]


def test_load_host_mapping(tmp_path):
    path = tmp_path / "hosts.properties"
    path.write_text(MAPPING)
    assert len(load_host_mapping(path)) == 4


def test_load_missing_file(tmp_path):
    with pytest.raises(UnreadableFileError):
        load_host_mapping(tmp_path / "missing")
