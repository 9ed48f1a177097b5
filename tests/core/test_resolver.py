"""Tests for SourceResolver against fake registries and git remotes."""

from pathlib import Path

import pytest

from palletkit.core.descriptors import PalletSourceDescriptor, SourceKind
from palletkit.core.errors import AuthFailure, NetworkFailure, NoSatisfyingVersion, NotFound
from palletkit.core.resolver import SourceResolver
from tests.fakes.git_remote import FakeGitRemote
from tests.fakes.registry import FakeRegistry
from tests.fakes.time import FakeTime
from tests.test_utils.projects import write_pallet_crate

REPO = "https://example.com/pallets.git"
MAIN_SHA = "1" * 40
TAG_SHA = "2" * 40
PEELED_SHA = "3" * 40


def _resolver(
    registry: FakeRegistry | None = None,
    git: FakeGitRemote | None = None,
    time: FakeTime | None = None,
    custom: dict[str, FakeRegistry] | None = None,
) -> SourceResolver:
    return SourceResolver(
        registry=registry or FakeRegistry(),
        custom_registries=custom or {},
        git=git or FakeGitRemote(),
        time=time or FakeTime(),
    )


def _registry(name: str, constraint: str | None = None) -> PalletSourceDescriptor:
    return PalletSourceDescriptor(kind=SourceKind.REGISTRY, identifier=name, version_constraint=constraint)


def _git(ref: str | None) -> PalletSourceDescriptor:
    return PalletSourceDescriptor(kind=SourceKind.GIT, identifier=REPO, git_ref=ref, crate_name="pallet-template")


def test_registry_picks_highest_matching_version() -> None:
    registry = FakeRegistry(crates={"balances": ["3.0.0", "4.0.0", "4.1.0", "5.0.0"]})

    resolved = _resolver(registry=registry).resolve(_registry("balances", "^4.0.0"))

    assert resolved.version == "4.1.0"
    assert resolved.proof.checked == "https://fake-registry.test/api/v1/crates/balances"


def test_registry_skips_yanked_and_prerelease() -> None:
    registry = FakeRegistry(
        crates={"balances": ["4.0.0", "4.2.0-rc.1"]},
        yanked={"balances": ["4.1.0"]},
    )

    resolved = _resolver(registry=registry).resolve(_registry("balances", "^4"))

    assert resolved.version == "4.0.0"


def test_registry_unknown_crate_is_not_found() -> None:
    with pytest.raises(NotFound):
        _resolver().resolve(_registry("nope"))


def test_registry_no_satisfying_version() -> None:
    registry = FakeRegistry(crates={"balances": ["3.0.0"]})

    with pytest.raises(NoSatisfyingVersion, match="3.0.0"):
        _resolver(registry=registry).resolve(_registry("balances", ">=4"))


def test_network_failures_are_retried_with_backoff() -> None:
    time = FakeTime()
    registry = FakeRegistry(
        crates={"balances": ["4.0.0"]},
        failures={"balances": [NetworkFailure("reset"), NetworkFailure("timeout")]},
    )

    resolved = _resolver(registry=registry, time=time).resolve(_registry("balances"))

    assert resolved.version == "4.0.0"
    assert registry.fetch_calls == ["balances", "balances", "balances"]
    assert time.sleep_calls == [0.5, 1.0]


def test_network_failure_surfaces_after_four_attempts() -> None:
    time = FakeTime()
    registry = FakeRegistry(
        crates={"balances": ["4.0.0"]},
        failures={"balances": [NetworkFailure(f"down {i}") for i in range(4)]},
    )

    with pytest.raises(NetworkFailure, match="down 3"):
        _resolver(registry=registry, time=time).resolve(_registry("balances"))

    assert len(registry.fetch_calls) == 4
    assert time.sleep_calls == [0.5, 1.0, 2.0]


def test_auth_failure_is_not_retried() -> None:
    time = FakeTime()
    registry = FakeRegistry(crates={"balances": ["4.0.0"]}, failures={"balances": [AuthFailure("denied")]})

    with pytest.raises(AuthFailure):
        _resolver(registry=registry, time=time).resolve(_registry("balances"))

    assert time.sleep_calls == []


def test_custom_registry_is_used_by_name() -> None:
    internal = FakeRegistry(crates={"my-pallet": ["1.2.0"]}, location="https://internal.test")
    descriptor = PalletSourceDescriptor(kind=SourceKind.CUSTOM_REGISTRY, identifier="internal/my-pallet")

    resolved = _resolver(custom={"internal": internal}).resolve(descriptor)

    assert resolved.version == "1.2.0"
    assert internal.fetch_calls == ["my-pallet"]


def test_unconfigured_custom_registry_is_not_found() -> None:
    descriptor = PalletSourceDescriptor(kind=SourceKind.CUSTOM_REGISTRY, identifier="internal/my-pallet")

    with pytest.raises(NotFound, match="registry add internal"):
        _resolver().resolve(descriptor)


@pytest.fixture
def git_remote() -> FakeGitRemote:
    return FakeGitRemote(
        refs={
            REPO: {
                "HEAD": MAIN_SHA,
                "refs/heads/main": MAIN_SHA,
                "refs/tags/v1.0.0": TAG_SHA,
                "refs/tags/v1.0.0^{}": PEELED_SHA,
            }
        }
    )


def test_git_without_ref_pins_head(git_remote: FakeGitRemote) -> None:
    resolved = _resolver(git=git_remote).resolve(_git(None))

    assert resolved.version == MAIN_SHA


def test_git_branch_resolves(git_remote: FakeGitRemote) -> None:
    assert _resolver(git=git_remote).resolve(_git("main")).version == MAIN_SHA


def test_git_annotated_tag_resolves_to_peeled_commit(git_remote: FakeGitRemote) -> None:
    assert _resolver(git=git_remote).resolve(_git("v1.0.0")).version == PEELED_SHA


def test_git_full_commit_accepted_after_reachability_check(git_remote: FakeGitRemote) -> None:
    sha = "f" * 40

    resolved = _resolver(git=git_remote).resolve(_git(sha))

    assert resolved.version == sha
    assert git_remote.ls_remote_calls == [(REPO, None)]


def test_git_abbreviated_commit_of_head_resolves(git_remote: FakeGitRemote) -> None:
    assert _resolver(git=git_remote).resolve(_git("1111111")).version == MAIN_SHA


def test_git_unknown_ref_is_not_found(git_remote: FakeGitRemote) -> None:
    with pytest.raises(NotFound, match="abcdef1"):
        _resolver(git=git_remote).resolve(_git("abcdef1"))


def test_git_unknown_repository_is_not_found() -> None:
    with pytest.raises(NotFound):
        _resolver().resolve(_git("main"))


def test_path_resolves_to_absolute_path(tmp_path: Path) -> None:
    crate = write_pallet_crate(tmp_path, "my-pallet", version="0.3.0")
    descriptor = PalletSourceDescriptor(kind=SourceKind.PATH, identifier=str(crate), crate_name="my-pallet")

    resolved = _resolver().resolve(descriptor)

    assert resolved.path == crate.resolve()
    assert resolved.version == "0.3.0"


def test_path_without_cargo_toml_is_not_found(tmp_path: Path) -> None:
    descriptor = PalletSourceDescriptor(kind=SourceKind.PATH, identifier=str(tmp_path), crate_name="my-pallet")

    with pytest.raises(NotFound, match="No Cargo.toml"):
        _resolver().resolve(descriptor)


def test_path_workspace_manifest_is_not_a_crate(tmp_path: Path) -> None:
    (tmp_path / "Cargo.toml").write_text('[workspace]\nmembers = ["a"]\n', encoding="utf-8")
    descriptor = PalletSourceDescriptor(kind=SourceKind.PATH, identifier=str(tmp_path), crate_name="my-pallet")

    with pytest.raises(NotFound, match=r"\[package\]"):
        _resolver().resolve(descriptor)


def test_path_version_must_satisfy_constraint(tmp_path: Path) -> None:
    crate = write_pallet_crate(tmp_path, "my-pallet", version="0.3.0")
    descriptor = PalletSourceDescriptor(
        kind=SourceKind.PATH,
        identifier=str(crate),
        crate_name="my-pallet",
        version_constraint="^1",
    )

    with pytest.raises(NoSatisfyingVersion):
        _resolver().resolve(descriptor)
