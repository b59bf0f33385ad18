"""Remote shell commands used for volume transfer.

Only provider-reported values are interpolated: the integer volume id and
the kernel device path. Operator-supplied names never reach a command.
"""

from __future__ import annotations

import shlex
from enum import StrEnum

from hcloud.volumes import BoundVolume

from hcutils.exceptions import CommandError


class TransferDirection(StrEnum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


class DownloadType(StrEnum):
    ARCHIVE = "archive"  # tar.gz of the mounted filesystem
    IMAGE = "image"  # gzipped raw block device


DEFAULT_SUFFIXES = {
    DownloadType.ARCHIVE: "tar.gz",
    DownloadType.IMAGE: "img.gz",
}


def _volume_id(volume_id: int) -> int:
    if isinstance(volume_id, bool) or not isinstance(volume_id, int) or volume_id <= 0:
        raise CommandError(f"Invalid volume id: {volume_id!r}")
    return volume_id


def mount_dir(volume_id: int) -> str:
    """Directory the provider automounts a volume on."""
    return f"/mnt/HC_Volume_{_volume_id(volume_id)}/"


def archive_command(volume_id: int) -> str:
    return f"cd {mount_dir(volume_id)} && tar czf - . | cat"


def image_command(device: str) -> str:
    if not device:
        raise CommandError("Volume has no linux device")
    return f"dd if={shlex.quote(device)} bs=32M | gzip -f"


def upload_command(volume_id: int) -> str:
    # The mount appears shortly after the attach action finishes.
    return (
        f"DIR={mount_dir(volume_id)}\n"
        'while [ ! -d "$DIR" ]; do\n'
        "\tsleep 1\n"
        "done\n"
        'cd "$DIR" && tar xfz -\n'
        "status=$?\n"
        "sync\n"
        "exit $status"
    )


def download_command(volume: BoundVolume, dl_type: DownloadType) -> str:
    match dl_type:
        case DownloadType.ARCHIVE:
            return archive_command(volume.id)
        case DownloadType.IMAGE:
            return image_command(volume.linux_device)
    raise CommandError(f"Unknown download type: {dl_type}")


def default_output_name(volume_id: int, dl_type: DownloadType) -> str:
    return f"volume-{_volume_id(volume_id)}.{DEFAULT_SUFFIXES[dl_type]}"
