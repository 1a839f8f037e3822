import asyncio
from pathlib import Path

from portsurvey.engine import DiscoveryEngine
from portsurvey.events import EventEmitter, EventType
from portsurvey.exceptions import PersistenceError, SessionConnectionError
from portsurvey.models import UNKNOWN_HOSTNAME, NeighborProtocol, Platform, PoeStatus, PortMode
from portsurvey.session.session import SSHSession
from portsurvey.writers import DeviceWriter

ACCESS_SWITCH = {
    "show run | i ^hostname": "hostname access-sw1",
    "show version": (
        "Cisco IOS Software, C2960X Software (C2960X-UNIVERSALK9-M), Version 15.2(7)E3\n"
        "access-sw1 uptime is 5 weeks, 1 day"
    ),
    "show interfaces status": (
        "Port      Name               Status       Vlan       Duplex  Speed Type\n"
        "Gi1/0/1   Uplink             connected    trunk      a-full a-1000 10/100/1000BaseTX\n"
        "Gi1/0/2   Phone              connected    10         a-full  a-100 10/100/1000BaseTX"
    ),
    "show cdp neighbors detail": (
        "-------------------------\n"
        "Device ID: core-sw1\n"
        "Platform: cisco WS-C3850-24T,  Capabilities: Router Switch\n"
        "Interface: GigabitEthernet1/0/1,  Port ID (outgoing port): GigabitEthernet1/0/48"
    ),
    "show lldp neighbors detail": (
        "Local Intf: Gi1/0/1\n"
        "Chassis id: 0011.2233.4455\n"
        "Port id: Gi1/0/48\n"
        "System Name: core-sw1.lldp\n"
        "\n"
        "Local Intf: Gi1/0/2\n"
        "Chassis id: 0a0b.0c0d.0e0f\n"
        "Port id: 0a0b.0c0d.0e0f\n"
        "System Name: SEP0A0B0C0D0E0F\n"
    ),
    "show interfaces GigabitEthernet1/0/1 switchport": (
        "Switchport: Enabled\nAdministrative Mode: trunk\nTrunking VLANs Enabled: ALL"
    ),
    "show interfaces GigabitEthernet1/0/2 switchport": (
        "Switchport: Enabled\nAdministrative Mode: static access\nAccess Mode VLAN: 10 (USERS)"
    ),
    "show mac address-table interface GigabitEthernet1/0/2": (
        "Vlan    Mac Address       Type        Ports\n"
        "  10    0a0b.0c0d.0e0f    DYNAMIC     Gi1/0/2"
    ),
    "show power inline GigabitEthernet1/0/2": (
        "Gi1/0/2   auto   on         6.3     IP Phone 8845       2     30.0"
    ),
}


class RecordingWriter:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def write(self, device, commands, target=None):
        if self.error:
            raise self.error
        self.calls.append((device, commands, target))
        return []


def session_factory(scripted_channel, channels):
    """Hand out pre-built channels by target, wrapped in fast SSH sessions."""
    def factory(config, target):
        return SSHSession(channels[target], timeout=1.0, quiet_period=0.02, probe_timeout=0.5)
    return factory


def test_discover_device_full_pipeline(config, scripted_channel):
    channel = scripted_channel(responses=ACCESS_SWITCH)
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=session_factory(scripted_channel, {"10.0.0.1": channel}),
    )

    device, commands = asyncio.run(engine.discover_device("10.0.0.1"))

    assert device.hostname == "access-sw1"
    assert device.platform == Platform.IOS
    assert list(device.interfaces) == ["GigabitEthernet1/0/1", "GigabitEthernet1/0/2"]

    uplink = device.interfaces["GigabitEthernet1/0/1"]
    assert uplink.mode == PortMode.TRUNK
    assert uplink.trunk_vlans == "1-4094"
    assert uplink.merged_neighbor.device_id == "core-sw1"
    assert uplink.merged_neighbor.source == NeighborProtocol.CDP

    phone = device.interfaces["GigabitEthernet1/0/2"]
    assert phone.mode == PortMode.ACCESS
    assert phone.access_vlan == "10"
    assert phone.poe_status == PoeStatus.AUTO
    assert phone.mac_addresses == ["0a0b0c0d0e0f"]
    assert phone.merged_neighbor.source == NeighborProtocol.LLDP

    assert [c.command for c in commands][:5] == [
        "show run | i ^hostname",
        "show version",
        "show interfaces status",
        "show cdp neighbors detail",
        "show lldp neighbors detail",
    ]
    assert [c.command for c in commands][5:8] == [
        "show interfaces GigabitEthernet1/0/1 switchport",
        "show mac address-table interface GigabitEthernet1/0/1",
        "show power inline GigabitEthernet1/0/1",
    ]
    assert channel.close_count == 1


def test_hostname_falls_back_to_prompt(config, scripted_channel):
    channel = scripted_channel(prompt="edge-3#", banner="edge-3#")
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=session_factory(scripted_channel, {"t": channel}),
    )
    device, _ = asyncio.run(engine.discover_device("t"))
    assert device.hostname == "edge-3"
    assert device.platform == Platform.UNKNOWN


def test_hostname_falls_back_to_version_banner(config, scripted_channel):
    # A prompt with a space cannot be turned into a hostname
    channel = scripted_channel(banner="lab sw#", prompt="lab sw#", responses={
        "show version": "Cisco IOS Software\nlab-sw uptime is 1 hour",
    })
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=session_factory(scripted_channel, {"t": channel}),
    )
    device, _ = asyncio.run(engine.discover_device("t"))
    assert device.hostname == "lab-sw"


def test_hostname_command_timeout_uses_last_prompt(config, scripted_channel):
    channel = scripted_channel(responses={"show run | i ^hostname": scripted_channel.SILENT})
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=lambda cfg, target: SSHSession(
            channel, timeout=0.3, quiet_period=0.02, probe_timeout=0.3
        ),
    )
    device, commands = asyncio.run(engine.discover_device("t"))
    assert commands[0].error
    assert device.hostname == "Switch"


def test_unknown_hostname_when_nothing_identifies_device(config, scripted_channel):
    channel = scripted_channel(banner="lab sw#", prompt="lab sw#")
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=session_factory(scripted_channel, {"t": channel}),
    )
    device, _ = asyncio.run(engine.discover_device("t"))
    assert device.hostname == UNKNOWN_HOSTNAME


def test_smb_uses_description_command(config, scripted_channel):
    channel = scripted_channel(responses={
        "show version": "SW-Version 2.5.0\nSG350-28P",
        "show interface description": "gi1      Up     Full   1000   Enabled  Uplink",
    })
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=session_factory(scripted_channel, {"t": channel}),
    )
    device, _ = asyncio.run(engine.discover_device("t"))

    assert device.platform == Platform.SMB
    assert "show interface description" in channel.commands
    assert "show interfaces status" not in channel.commands
    assert list(device.interfaces) == ["GigabitEthernet1"]


def test_failed_command_is_recorded_and_pipeline_continues(config, scripted_channel):
    responses = dict(ACCESS_SWITCH)
    responses["show cdp neighbors detail"] = scripted_channel.SILENT
    channel = scripted_channel(responses=responses)
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=lambda cfg, target: SSHSession(
            channel, timeout=0.3, quiet_period=0.02, probe_timeout=0.3
        ),
    )

    device, commands = asyncio.run(engine.discover_device("t"))

    cdp = [c for c in commands if c.command == "show cdp neighbors detail"][0]
    assert cdp.error
    assert cdp.output.startswith("ERROR: ")
    assert len(device.interfaces) == 2
    # Only LLDP is left for the uplink
    uplink = device.interfaces["GigabitEthernet1/0/1"]
    assert uplink.merged_neighbor.source == NeighborProtocol.LLDP


def test_batch_isolates_failing_target(config, scripted_channel):
    channels = {
        "10.0.0.1": scripted_channel(),
        "10.0.0.2": scripted_channel(open_error=SessionConnectionError("connection refused")),
        "10.0.0.3": scripted_channel(),
    }
    writer = RecordingWriter()
    emitter = EventEmitter()
    seen = []
    emitter.subscribe(lambda e: seen.append(e))

    engine = DiscoveryEngine(
        config,
        writer=writer,
        event_emitter=emitter,
        session_factory=session_factory(scripted_channel, channels),
    )
    result = asyncio.run(engine.run(["10.0.0.1", "10.0.0.2", "10.0.0.3"]))

    assert result.successful == 2
    assert result.failed == 1
    assert "connection refused" in result.errors["10.0.0.2"]
    assert len(writer.calls) == 2

    complete = [e for e in seen if e.event_type == EventType.BATCH_COMPLETE]
    assert complete[-1].data["success"] == 2
    assert complete[-1].data["errors"] == 1

    outcomes = [
        (e.event_type, e.target) for e in seen
        if e.event_type in (EventType.TARGET_COMPLETE, EventType.TARGET_FAILED)
    ]
    assert outcomes == [
        (EventType.TARGET_COMPLETE, "10.0.0.1"),
        (EventType.TARGET_FAILED, "10.0.0.2"),
        (EventType.TARGET_COMPLETE, "10.0.0.3"),
    ]


def test_event_order_for_one_target(config, scripted_channel):
    emitter = EventEmitter()
    seen = []
    emitter.subscribe(lambda e: seen.append(e.event_type))

    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        event_emitter=emitter,
        session_factory=session_factory(scripted_channel, {"10.0.0.1": scripted_channel()}),
    )
    asyncio.run(engine.run())

    assert seen[0] == EventType.BATCH_STARTED
    assert seen[1] == EventType.PROGRESS
    assert seen[-1] == EventType.BATCH_COMPLETE
    done = seen.index(EventType.TARGET_COMPLETE)
    assert all(t == EventType.PROGRESS for t in seen[1:done])


def test_persistence_failure_fails_target(config, scripted_channel):
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(error=PersistenceError("disk full")),
        session_factory=session_factory(scripted_channel, {"10.0.0.1": scripted_channel()}),
    )
    result = asyncio.run(engine.run())
    assert result.failed == 1
    assert result.errors["10.0.0.1"] == "disk full"


def test_enable_failure_fails_target(config, scripted_channel):
    config.enable_secret = "wrong"
    channel = scripted_channel(banner="Switch>", responses={
        "enable": ["enable\r\nPassword: "],
        "wrong": ["\r\n% Access denied\r\n\r\nSwitch>"],
    })
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=session_factory(scripted_channel, {"10.0.0.1": channel}),
    )
    result = asyncio.run(engine.run())

    assert result.failed == 1
    assert channel.close_count >= 1


def test_concurrent_targets(config, scripted_channel):
    config.max_concurrent = 3
    channels = {f"10.0.0.{i}": scripted_channel() for i in range(1, 4)}
    engine = DiscoveryEngine(
        config,
        writer=RecordingWriter(),
        session_factory=session_factory(scripted_channel, channels),
    )
    result = asyncio.run(engine.run(list(channels)))
    assert result.successful == 3


def test_same_hostname_on_concurrent_targets_gets_separate_output(config, scripted_channel):
    config.max_concurrent = 2
    channels = {"10.0.0.1": scripted_channel(), "10.0.0.2": scripted_channel()}
    writer = DeviceWriter(config.output_dir)
    engine = DiscoveryEngine(
        config,
        writer=writer,
        session_factory=session_factory(scripted_channel, channels),
    )

    result = asyncio.run(engine.run(list(channels)))

    assert result.successful == 2
    dirs = sorted(p.name for p in Path(config.output_dir).iterdir())
    assert len(dirs) == 2
    assert dirs[0] == "Switch"
    assert dirs[1] in ("Switch_10.0.0.1", "Switch_10.0.0.2")
    for name in dirs:
        assert (Path(config.output_dir) / name / "ports.json").is_file()
