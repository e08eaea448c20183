import threading
import time
from datetime import datetime

import pytest
from sqlalchemy import func, select

from fleetinv.core.protocol import (
    BatteryReport,
    DiskDrive,
    HardwareReport,
    License,
    NetworkAdapterInfo,
    OsReport,
    PathInfo,
    ProfileInfo,
    Register,
    SoftwareEntry,
    Volume,
)
from fleetinv.server import queries
from fleetinv.server.models import Identity, Software, SoftwareVersion, UserProfile, UserProfilePath
from fleetinv.server import reconcile
from fleetinv.server.reconcile import SnapshotReconciler, diff_membership


def _profile(sid, username=None, size=1024, paths=None, **kwargs):
    return ProfileInfo(
        sid=sid,
        username=username,
        size=size,
        last_use_time=datetime(2024, 5, 1, 8, 30),
        path_size=[PathInfo(path=p, size=s) for p, s in (paths or {}).items()],
        **kwargs
    )


def _count(get_session, model):
    with get_session() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_diff_membership_ignores_order():
    incoming = {'b': 2, 'c': 3}
    diff = diff_membership(['c', 'a'], incoming)
    reversed_diff = diff_membership(['a', 'c'], dict(reversed(list(incoming.items()))))

    assert diff.to_add == {'b': 2}
    assert diff.to_update == {'c': 3}
    assert diff.to_delete == {'a'}
    assert diff == reversed_diff


def test_profiles_added_then_replay_is_noop(reconciler, endpoint, get_session):
    profiles = [
        _profile("S-1-5-21-1001", "CORP\\alice", paths={"C:\\Users\\alice\\Documents": 400}),
        _profile("S-1-5-21-1002", "CORP\\bob"),
    ]

    stats = reconciler.update_profiles(endpoint.id, profiles)
    assert stats == {'added': 2, 'updated': 0, 'deleted': 0}

    stats = reconciler.update_profiles(endpoint.id, profiles)
    assert stats == {'added': 0, 'updated': 2, 'deleted': 0}
    assert _count(get_session, UserProfile) == 2
    assert _count(get_session, Identity) == 2
    assert _count(get_session, UserProfilePath) == 1


def test_profiles_order_does_not_matter(reconciler, endpoint, get_session):
    profiles = [_profile("S-1-5-21-1"), _profile("S-1-5-21-2"), _profile("S-1-5-21-3")]
    reconciler.update_profiles(endpoint.id, profiles)
    stats = reconciler.update_profiles(endpoint.id, list(reversed(profiles)))

    assert stats['added'] == 0 and stats['deleted'] == 0
    with get_session() as session:
        sids = {p['sid'] for p in queries.list_profiles(session, endpoint.id)}
    assert sids == {"S-1-5-21-1", "S-1-5-21-2", "S-1-5-21-3"}


def test_removed_profile_takes_its_paths(reconciler, endpoint, get_session):
    reconciler.update_profiles(endpoint.id, [
        _profile("S-1-5-21-1", paths={"C:\\Users\\a\\Desktop": 10}),
        _profile("S-1-5-21-2", paths={"C:\\Users\\b\\Desktop": 20}),
    ])

    stats = reconciler.update_profiles(endpoint.id, [_profile("S-1-5-21-2", paths={"C:\\Users\\b\\Desktop": 25})])

    assert stats == {'added': 0, 'updated': 1, 'deleted': 1}
    with get_session() as session:
        assert queries.list_profile_paths(session, endpoint.id, "S-1-5-21-1") == []
        assert queries.list_profile_paths(session, endpoint.id, "S-1-5-21-2") == [
            {'path': "C:\\Users\\b\\Desktop", 'size': 25}
        ]
    # L'identité est conservée même si le profil disparaît
    assert _count(get_session, Identity) == 2


def test_profile_update_changes_columns(reconciler, endpoint, get_session):
    reconciler.update_profiles(endpoint.id, [_profile("S-1-5-21-1", size=100)])
    reconciler.update_profiles(endpoint.id, [_profile("S-1-5-21-1", size=None, status=4, roaming_configured=True)])

    with get_session() as session:
        profile = queries.list_profiles(session, endpoint.id)[0]
    assert profile['size'] is None
    assert profile['status'] == 4
    assert profile['roaming_configured'] is True
    assert profile['last_use_time'] == "2024-05-01T08:30:00Z"


def test_duplicate_sid_keeps_last(reconciler, endpoint, get_session):
    stats = reconciler.update_profiles(endpoint.id, [
        _profile("S-1-5-21-1", size=1),
        _profile("S-1-5-21-1", size=2),
    ])
    assert stats['added'] == 1
    with get_session() as session:
        assert queries.list_profiles(session, endpoint.id)[0]['size'] == 2


def test_identities_shared_between_endpoints(reconciler, registry, endpoint, identity_cache, get_session):
    other, _ = registry.register(Register(name="PC-02"))
    reconciler.update_profiles(endpoint.id, [_profile("S-1-5-21-500", "CORP\\admin")])
    reconciler.update_profiles(other.id, [_profile("S-1-5-21-500", "CORP\\admin")])

    assert _count(get_session, Identity) == 1
    assert _count(get_session, UserProfile) == 2
    assert len(identity_cache) == 1


def test_software_versions_are_shared(reconciler, registry, endpoint, get_session):
    other, _ = registry.register(Register(name="PC-02"))
    firefox = SoftwareEntry(name="Mozilla Firefox", version="128.0", publisher="Mozilla")

    assert reconciler.update_software(endpoint.id, [firefox, firefox]) == 1
    assert reconciler.update_software(other.id, [
        firefox,
        SoftwareEntry(name="7-Zip", version="23.01"),
    ]) == 2

    assert _count(get_session, Software) == 2
    assert _count(get_session, SoftwareVersion) == 2
    with get_session() as session:
        catalog = {s['name']: s for s in queries.software_catalog(session)}
    assert catalog["Mozilla Firefox"]['installations'] == 2
    assert catalog["7-Zip"]['publisher'] is None


def test_software_list_is_replaced(reconciler, endpoint, get_session):
    reconciler.update_software(endpoint.id, [SoftwareEntry(name="Old", version="1")])
    reconciler.update_software(endpoint.id, [SoftwareEntry(name="New", version="2")])

    with get_session() as session:
        installed = queries.list_endpoint_software(session, endpoint.id)
    assert installed == [{'name': "New", 'publisher': None, 'version': "2"}]


def test_license_keys_diff(reconciler, endpoint, get_session):
    stats = reconciler.update_licenses(endpoint.id, [
        License(name="Windows", key="AAAAA-BBBBB-CCCCC-DDDDD-EEEEE"),
        License(name="Office", key="11111-22222-33333-44444-55555"),
    ])
    assert stats == {'added': 2, 'updated': 0, 'deleted': 0}

    stats = reconciler.update_licenses(endpoint.id, [
        License(name="Windows", key="FFFFF-GGGGG-HHHHH-JJJJJ-KKKKK"),
    ])
    assert stats == {'added': 0, 'updated': 1, 'deleted': 1}

    with get_session() as session:
        assert queries.list_licenses(session, endpoint.id) == [
            {'name': "Windows", 'key': "FFFFF-GGGGG-HHHHH-JJJJJ-KKKKK"}
        ]


def test_os_hardware_and_status(reconciler, registry, endpoint, get_session):
    reconciler.update_os(endpoint.id, OsReport(
        operating_system="Windows", os_version="10.0.19045", computer_name="PC-COMPTA-01", domain="CORP"
    ))
    reconciler.update_hardware(endpoint.id, HardwareReport(
        manufacturer="LENOVO",
        cores=4,
        disks=[DiskDrive(model="Samsung SSD", size=500107862016)],
        network=[NetworkAdapterInfo(name="Ethernet", mac_address="AA:BB:CC:DD:EE:FF", ip_addresses=["10.1.2.3"])],
    ))
    reconciler.update_hardware(endpoint.id, HardwareReport(
        manufacturer="LENOVO",
        cores=8,
        disks=[DiskDrive(model="Samsung SSD", size=500107862016)],
    ))
    reconciler.update_volumes(endpoint.id, [Volume(drive_letter="C:", capacity=100, free_space=40, file_system="NTFS")])
    reconciler.update_batteries(endpoint.id, [BatteryReport(id="BAT0", percent=87, power_plugged=True)])

    detail = registry.describe(endpoint.uuid)
    assert detail['os'] == "Windows"
    assert detail['domain'] == "CORP"
    with get_session() as session:
        hardware = queries.describe_hardware(session, endpoint.id)
        status = queries.describe_status(session, endpoint.id)
    assert hardware['cores'] == 8
    assert len(hardware['disks']) == 1
    assert hardware['network'] == []
    assert status['volumes'][0]['free_space'] == 40
    assert status['batteries'] == [{'id': "BAT0", 'percent': 87, 'power_plugged': True, 'seconds_left': None}]


def test_failed_profile_update_leaves_membership_unchanged(reconciler, endpoint, get_session, monkeypatch):
    reconciler.update_profiles(endpoint.id, [
        _profile("S-1-5-21-1001", "CORP\\alice", paths={"C:\\Users\\alice\\Documents": 400}),
    ])

    def fail_paths(session, endpoint_id, identity_id, profile):
        raise RuntimeError("disque plein")

    monkeypatch.setattr(SnapshotReconciler, "_update_paths", staticmethod(fail_paths))
    with pytest.raises(RuntimeError):
        reconciler.update_profiles(endpoint.id, [_profile("S-1-5-21-1002"), _profile("S-1-5-21-1003")])

    with get_session() as session:
        assert [p['sid'] for p in queries.list_profiles(session, endpoint.id)] == ["S-1-5-21-1001"]
        assert queries.list_profile_paths(session, endpoint.id, "S-1-5-21-1001") == [
            {'path': "C:\\Users\\alice\\Documents", 'size': 400}
        ]
    assert _count(get_session, Identity) == 1
    assert _count(get_session, UserProfile) == 1


def _push_concurrently(reconciler, endpoint_id, snapshots):
    errors = []

    def push(profiles):
        try:
            reconciler.update_profiles(endpoint_id, profiles)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=push, args=(profiles,)) for profiles in snapshots]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(60)
    return errors


@pytest.fixture
def slow_diff(monkeypatch):
    """Élargit la fenêtre entre la lecture des profils connus et l'écriture"""
    real_diff = reconcile.diff_membership

    def slow(existing_keys, incoming):
        existing_keys = list(existing_keys)
        time.sleep(0.2)
        return real_diff(existing_keys, incoming)

    monkeypatch.setattr(reconcile, "diff_membership", slow)


def test_concurrent_snapshots_apply_one_after_the_other(reconciler, endpoint, get_session, slow_diff):
    errors = _push_concurrently(reconciler, endpoint.id, [
        [_profile("S-1-5-21-A")],
        [_profile("S-1-5-21-B")],
    ])

    assert errors == []
    with get_session() as session:
        sids = [p['sid'] for p in queries.list_profiles(session, endpoint.id)]
    # L'état final est l'un des deux instantanés, jamais leur mélange
    assert sids in (["S-1-5-21-A"], ["S-1-5-21-B"])


def test_duplicate_concurrent_snapshots_are_safe(reconciler, endpoint, get_session, slow_diff):
    profiles = [_profile(f"S-1-5-21-{n}", paths={f"C:\\Users\\u{n}\\Desktop": n}) for n in range(30)]

    errors = _push_concurrently(reconciler, endpoint.id, [profiles] * 4)

    assert errors == []
    assert _count(get_session, UserProfile) == 30
    assert _count(get_session, Identity) == 30
    assert _count(get_session, UserProfilePath) == 30
