import io
import re

import pytest
from hcloud import APIException
from rich.console import Console

from hcutils.actions import ActionPoller
from hcutils.config import Settings
from hcutils.exceptions import ActionFailed, AttachmentStateError, TransportError, VolumeNotFound
from hcutils.volumes import AttachmentState, PriorAttachment, VolumeManager
from tests.conftest import FakeHetzner

pytestmark = [pytest.mark.xdist_group("unit")]


class ScriptedConfirm:
    def __init__(self, *answers: bool) -> None:
        self.answers = list(answers)
        self.questions: list[str] = []

    def __call__(self, question: str) -> bool:
        self.questions.append(question)
        return self.answers.pop(0)


def _manager(hetzner: FakeHetzner, settings: Settings, confirm: ScriptedConfirm) -> VolumeManager:
    poller = ActionPoller(hetzner, 0.0, lambda _: None)  # type: ignore[arg-type]
    return VolumeManager(hetzner, poller, settings, confirm, Console(file=io.StringIO()))  # type: ignore[arg-type]


@pytest.fixture
def owner(hetzner: FakeHetzner):
    return hetzner.add_server("database-1", server_id=7)


class TestResolve:
    def test_by_id(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.add_volume(42, "data")
        attachment = _manager(hetzner, settings, ScriptedConfirm()).resolve("42")
        assert attachment.volume.id == 42
        assert attachment.prior is None
        assert attachment.state is AttachmentState.UNATTACHED
        assert hetzner.calls == ["volumes.get_by_id"]

    def test_by_name(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.add_volume(42, "data")
        attachment = _manager(hetzner, settings, ScriptedConfirm()).resolve("data")
        assert attachment.volume.id == 42
        assert hetzner.calls == ["volumes.get_by_name"]

    def test_captures_prior_owner(self, hetzner: FakeHetzner, settings: Settings, owner):
        hetzner.add_volume(42, "data", server=owner)
        attachment = _manager(hetzner, settings, ScriptedConfirm()).resolve("42")
        assert attachment.prior == PriorAttachment(server_id=7, server_name="database-1")
        assert attachment.state is AttachmentState.ATTACHED_TO_OTHER

    def test_numeric_name(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.add_volume(5, "2024")
        attachment = _manager(hetzner, settings, ScriptedConfirm()).resolve("2024")
        assert attachment.volume.id == 5
        assert hetzner.calls == ["volumes.get_by_id", "volumes.get_by_name"]

    @pytest.mark.parametrize("ref", ["999", "missing"])
    def test_not_found(self, hetzner: FakeHetzner, settings: Settings, ref: str):
        with pytest.raises(VolumeNotFound, match=ref):
            _manager(hetzner, settings, ScriptedConfirm()).resolve(ref)

    def test_api_failure(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.fail["volumes.get_by_id"] = APIException(code="unauthorized", message="bad token", details=None)
        with pytest.raises(TransportError, match="bad token"):
            _manager(hetzner, settings, ScriptedConfirm()).resolve("42")


class TestReleasePrior:
    def test_unattached_needs_no_prompt(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.add_volume(42, "data")
        confirm = ScriptedConfirm()
        assert _manager(hetzner, settings, confirm).resolve("42").release_prior() is True
        assert confirm.questions == []
        assert "volumes.detach" not in hetzner.calls

    def test_decline_touches_nothing(self, hetzner: FakeHetzner, settings: Settings, owner):
        hetzner.add_volume(42, "data", server=owner)
        confirm = ScriptedConfirm(False)
        attachment = _manager(hetzner, settings, confirm).resolve("42")

        assert attachment.release_prior() is False

        assert "attached to server database-1" in confirm.questions[0]
        assert "data loss" in confirm.questions[0]
        assert hetzner.attached_to(42) == 7
        assert attachment.state is AttachmentState.ATTACHED_TO_OTHER

    def test_confirm_detaches(self, hetzner: FakeHetzner, settings: Settings, owner):
        hetzner.add_volume(42, "data", server=owner)
        attachment = _manager(hetzner, settings, ScriptedConfirm(True)).resolve("42")

        assert attachment.release_prior() is True

        assert hetzner.attached_to(42) is None
        assert attachment.state is AttachmentState.UNATTACHED


class TestAttach:
    def test_attach_to_ephemeral(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.add_volume(42, "data")
        temp = hetzner.add_server("hcutil-temp-srv-12345")
        attachment = _manager(hetzner, settings, ScriptedConfirm()).resolve("42")

        attachment.attach(temp)  # type: ignore[arg-type]

        assert hetzner.attached_to(42) == temp.id
        assert attachment.state is AttachmentState.ATTACHED_TO_EPHEMERAL

    def test_refuses_while_attached_elsewhere(self, hetzner: FakeHetzner, settings: Settings, owner):
        hetzner.add_volume(42, "data", server=owner)
        temp = hetzner.add_server("hcutil-temp-srv-12345")
        attachment = _manager(hetzner, settings, ScriptedConfirm()).resolve("42")

        with pytest.raises(AttachmentStateError, match="detached first"):
            attachment.attach(temp)  # type: ignore[arg-type]

        assert "volumes.attach" not in hetzner.calls
        assert hetzner.attached_to(42) == 7

    def test_failed_attach_action(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.add_volume(42, "data")
        hetzner.failing_actions["attach_volume"] = "volume is locked"
        attachment = _manager(hetzner, settings, ScriptedConfirm()).resolve("42")

        with pytest.raises(ActionFailed, match="volume is locked"):
            attachment.attach(hetzner.add_server("temp"))  # type: ignore[arg-type]

        assert attachment.state is AttachmentState.UNATTACHED


class TestMaybeReattach:
    def _attached_to_temp(self, hetzner: FakeHetzner, settings: Settings, owner, confirm: ScriptedConfirm):
        hetzner.add_volume(42, "data", server=owner)
        attachment = _manager(hetzner, settings, confirm).resolve("42")
        attachment.release_prior()
        attachment.attach(hetzner.add_server("temp"))  # type: ignore[arg-type]
        return attachment

    def test_no_prior_owner(self, hetzner: FakeHetzner, settings: Settings):
        hetzner.add_volume(42, "data")
        confirm = ScriptedConfirm()
        attachment = _manager(hetzner, settings, confirm).resolve("42")
        attachment.attach(hetzner.add_server("temp"))  # type: ignore[arg-type]

        assert attachment.maybe_reattach() is False
        assert confirm.questions == []

    def test_confirm_moves_volume_back(self, hetzner: FakeHetzner, settings: Settings, owner):
        confirm = ScriptedConfirm(True, True)
        attachment = self._attached_to_temp(hetzner, settings, owner, confirm)

        assert attachment.maybe_reattach() is True

        assert "reattach" in confirm.questions[1]
        assert hetzner.attached_to(42) == 7
        assert attachment.state is AttachmentState.ATTACHED_TO_OTHER
        assert hetzner.calls[-3:] == ["volumes.detach", "servers.get_by_id", "volumes.attach"]

    def test_decline_leaves_volume_on_temp_server(self, hetzner: FakeHetzner, settings: Settings, owner):
        attachment = self._attached_to_temp(hetzner, settings, owner, ScriptedConfirm(True, False))

        assert attachment.maybe_reattach() is False

        assert attachment.state is AttachmentState.ATTACHED_TO_EPHEMERAL
        assert hetzner.attached_to(42) != 7


class TestCreate:
    def test_defaults(self, hetzner: FakeHetzner, settings: Settings):
        server = hetzner.add_server("temp")
        server.location = hetzner.add_volume(1, "x").location

        volume = _manager(hetzner, settings, ScriptedConfirm()).create(server, 10)  # type: ignore[arg-type]

        assert re.fullmatch(r"hcutil-uploaded-volume-\d{5}", volume.name)
        assert volume.size == 10
        assert volume.format == "ext4"
        assert volume.labels == {"created-by": "hcutils"}
        assert hetzner.attached_to(volume.id) == server.id

    def test_failed_follow_up_action(self, hetzner: FakeHetzner, settings: Settings):
        server = hetzner.add_server("temp")
        server.location = hetzner.add_volume(1, "x").location
        hetzner.failing_actions["attach_volume"] = "attach failed"

        with pytest.raises(ActionFailed, match="attach failed"):
            _manager(hetzner, settings, ScriptedConfirm()).create(server, 10, "named")  # type: ignore[arg-type]
