"""MCP Server for lease-driven host configuration.

Acquires leases for network devices and keeps host-wide settings
(hostname, resolver) in line with the most authoritative lease through
external backup/install/restore scripts.

Tools exposed:
- list_devices: List managed devices and their acquisition state
- get_leases: Get the active leases of a device
- acquire: Start acquiring a lease for a device
- drop: Release the active lease of a device
- wait_lease_event: Wait for the next lease-acquired/lease-released event
- reconcile: Run a reconciliation pass now
- updater_status: Show per-kind updater state and sources
- get_audit_log: Read recent settings changes
"""
import asyncio
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
    Resource,
)
from pydantic import AnyUrl

from .acquisition import (
    AddrconfDeviceObject,
    LeaseAcquisitionService,
    LeaseEvent,
    LeaseEventType,
    Negotiator,
    StaticNegotiator,
    parse_uuid,
)
from .config.inventory import AddrconfInventory
from .config.schema import AddrconfMode
from .devices.store import DeviceStore
from .exceptions import AddrconfConfigError, AddrconfMethodError
from .updater import ReconciliationEngine, ScriptExecutor, UpdaterRegistry
from .utils.logging_config import setup_logging, timed_section
from .utils.audit_log import setup_audit_logging, get_recent_changes

# Initialize audit logging
setup_audit_logging()

setup_logging()
logger = logging.getLogger(__name__)

NEGOTIATORS: dict[AddrconfMode, type[Negotiator]] = {
    AddrconfMode.STATIC: StaticNegotiator,
}

DEFAULT_WAIT_TIMEOUT = 30.0


class AddrconfContext:
    """Everything the tools operate on, wired from one inventory."""

    def __init__(self, inventory: AddrconfInventory):
        self.inventory = inventory
        self.store = DeviceStore.from_inventory(inventory)
        self.registry = UpdaterRegistry.from_inventory(inventory)
        self.registry.initialize()
        self.engine = ReconciliationEngine(
            self.store,
            self.registry,
            ScriptExecutor(timeout=inventory.get_script_timeout()),
        )

        mode = inventory.get_acquisition_mode()
        if mode not in NEGOTIATORS:
            raise AddrconfConfigError(f"No negotiator available for acquisition mode {mode.value}")
        self.service = LeaseAcquisitionService(self.store, NEGOTIATORS[mode]())
        self.engine.watch(self.service.bus)

    def device_object(self, device: str) -> AddrconfDeviceObject:
        self.store.get_device(device)
        return AddrconfDeviceObject(self.service, device)


# Global context (initialized on first tool call)
context: Optional[AddrconfContext] = None


def get_context() -> AddrconfContext:
    """Get or create the server context."""
    global context
    if context is None:
        context = AddrconfContext(AddrconfInventory())
    return context


# Create MCP server
server = Server("mcp-addrconf")


def _text(payload: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


def _parse_uuid_argument(value: Any) -> Optional[bytes]:
    """Decode a lease uuid given as hex or UUID string.

    Anything undecodable is passed through so the device object rejects
    it with InvalidArgs.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return bytes.fromhex(value)
        except ValueError:
            pass
        try:
            return parse_uuid(value)
        except ValueError:
            return value.encode()
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError):
            return value
    return value


# === TOOLS ===

@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="list_devices",
            description="List managed network devices with their acquisition state",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="get_leases",
            description="Get the active leases of a device",
            inputSchema={
                "type": "object",
                "properties": {
                    "device": {
                        "type": "string",
                        "description": "Device name (e.g., 'eth0')"
                    }
                },
                "required": ["device"]
            }
        ),
        Tool(
            name="acquire",
            description=(
                "Start acquiring a lease for a device. Returns once negotiation has started; "
                "set wait=true to block until the lease-acquired event and the follow-up "
                "reconciliation pass"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "device": {
                        "type": "string",
                        "description": "Device name"
                    },
                    "options": {
                        "type": "object",
                        "description": (
                            "Request options: uuid, family (ipv4/ipv6), hostname, client_id, "
                            "vendor_class, lease_time, acquire_timeout, update (list of kinds), "
                            "dns_servers, dns_search, domain"
                        )
                    },
                    "wait": {
                        "type": "boolean",
                        "description": "Wait for the acquisition to complete",
                        "default": False
                    },
                    "timeout": {
                        "type": "number",
                        "description": "Seconds to wait when wait=true",
                        "default": DEFAULT_WAIT_TIMEOUT
                    }
                },
                "required": ["device", "options"]
            }
        ),
        Tool(
            name="drop",
            description="Release the active lease of a device, optionally only the one with the given uuid",
            inputSchema={
                "type": "object",
                "properties": {
                    "device": {
                        "type": "string",
                        "description": "Device name"
                    },
                    "uuid": {
                        "type": "string",
                        "description": "Lease uuid (32 hex digits or UUID string); omit to release any lease"
                    },
                    "wait": {
                        "type": "boolean",
                        "description": "Wait for the lease-released event",
                        "default": False
                    },
                    "timeout": {
                        "type": "number",
                        "description": "Seconds to wait when wait=true",
                        "default": DEFAULT_WAIT_TIMEOUT
                    }
                },
                "required": ["device"]
            }
        ),
        Tool(
            name="wait_lease_event",
            description="Wait for the next lease event of a device",
            inputSchema={
                "type": "object",
                "properties": {
                    "device": {
                        "type": "string",
                        "description": "Device name"
                    },
                    "event": {
                        "type": "string",
                        "enum": [t.value for t in LeaseEventType],
                        "description": "Only return this event type"
                    },
                    "timeout": {
                        "type": "number",
                        "description": "Seconds to wait",
                        "default": DEFAULT_WAIT_TIMEOUT
                    }
                },
                "required": ["device"]
            }
        ),
        Tool(
            name="reconcile",
            description="Run a reconciliation pass: back up, install or restore host settings from the current leases",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="updater_status",
            description="Show per-kind updater state: enabled, installed lease, backup, candidate sources",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="get_audit_log",
            description="Get recent host settings changes from the audit log",
            inputSchema={
                "type": "object",
                "properties": {
                    "kind": {
                        "type": "string",
                        "description": "Filter by update kind (hostname, resolver, ...)"
                    },
                    "operation": {
                        "type": "string",
                        "description": "Filter by operation (backup, install, restore)"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of records to return",
                        "default": 20
                    }
                },
                "required": []
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    device = arguments.get("device", "N/A")

    async with timed_section(f"tool:{name}", subject=device):
        try:
            ctx = get_context()

            if name == "list_devices":
                return await handle_list_devices(ctx)

            elif name == "get_leases":
                return await handle_get_leases(ctx, arguments["device"])

            elif name == "acquire":
                return await handle_acquire(
                    ctx,
                    arguments["device"],
                    arguments.get("options"),
                    arguments.get("wait", False),
                    arguments.get("timeout", DEFAULT_WAIT_TIMEOUT)
                )

            elif name == "drop":
                return await handle_drop(
                    ctx,
                    arguments["device"],
                    arguments.get("uuid"),
                    arguments.get("wait", False),
                    arguments.get("timeout", DEFAULT_WAIT_TIMEOUT)
                )

            elif name == "wait_lease_event":
                return await handle_wait_lease_event(
                    ctx,
                    arguments["device"],
                    arguments.get("event"),
                    arguments.get("timeout", DEFAULT_WAIT_TIMEOUT)
                )

            elif name == "reconcile":
                return await handle_reconcile(ctx)

            elif name == "updater_status":
                return await handle_updater_status(ctx)

            elif name == "get_audit_log":
                return await handle_get_audit_log(
                    arguments.get("kind"),
                    arguments.get("operation"),
                    arguments.get("limit", 20)
                )

            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

        except AddrconfMethodError as e:
            logger.warning(f"Tool {name} rejected: {e}")
            return _text({"error": e.to_dict()})

        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return [TextContent(type="text", text=f"Error: {str(e)}")]


# === TOOL HANDLERS ===

async def handle_list_devices(ctx: AddrconfContext) -> list[TextContent]:
    """List all managed devices."""
    devices = []
    for dev in ctx.store:
        props = ctx.device_object(dev.name).get_properties()
        devices.append({
            "name": dev.name,
            "ifindex": dev.ifindex,
            "state": props["state"],
            "leases": len(dev.leases),
        })

    return _text({"mode": ctx.service.mode.value, "devices": devices})


async def handle_get_leases(ctx: AddrconfContext, device: str) -> list[TextContent]:
    """Get the leases of one device."""
    return _text(ctx.store.get_device(device).to_dict())


async def _await_event(
    obj: AddrconfDeviceObject,
    event_type: LeaseEventType,
    start,
    timeout: float,
) -> Optional[LeaseEvent]:
    """Run ``start`` with a subscription already in place and wait for the event."""
    loop = asyncio.get_running_loop()
    fut: asyncio.Future = loop.create_future()

    def on_event(event: LeaseEvent) -> None:
        if event.event_type == event_type and not fut.done():
            fut.set_result(event)

    sub = obj.subscribe(on_event)
    try:
        start()
        return await asyncio.wait_for(fut, timeout)
    except asyncio.TimeoutError:
        return None
    finally:
        sub.cancel()


async def handle_acquire(
    ctx: AddrconfContext,
    device: str,
    options: Any,
    wait: bool = False,
    timeout: float = DEFAULT_WAIT_TIMEOUT,
) -> list[TextContent]:
    """Start a lease acquisition, optionally waiting for its outcome."""
    obj = ctx.device_object(device)

    if not wait:
        obj.acquire(options)
        return _text({"device": device, "started": True, "state": obj.get_properties()["state"]})

    event = await _await_event(obj, LeaseEventType.ACQUIRED, lambda: obj.acquire(options), timeout)
    if event is None:
        return _text({"device": device, "started": True, "completed": False, "timeout": timeout})

    reconcile = await ctx.engine.drain() if event.changes_leases else None
    return _text({
        "device": device,
        "started": True,
        "completed": True,
        "event": event.to_dict(),
        "reconcile": reconcile.to_dict() if reconcile else None,
    })


async def handle_drop(
    ctx: AddrconfContext,
    device: str,
    uuid: Any = None,
    wait: bool = False,
    timeout: float = DEFAULT_WAIT_TIMEOUT,
) -> list[TextContent]:
    """Release a lease, optionally waiting for the teardown."""
    obj = ctx.device_object(device)
    lease_uuid = _parse_uuid_argument(uuid)

    if not wait:
        obj.drop(lease_uuid)
        return _text({"device": device, "released": True})

    event = await _await_event(obj, LeaseEventType.RELEASED, lambda: obj.drop(lease_uuid), timeout)
    if event is None:
        return _text({"device": device, "released": True, "completed": False, "timeout": timeout})

    reconcile = await ctx.engine.drain() if event.changes_leases else None
    return _text({
        "device": device,
        "released": True,
        "completed": True,
        "event": event.to_dict(),
        "reconcile": reconcile.to_dict() if reconcile else None,
    })


async def handle_wait_lease_event(
    ctx: AddrconfContext,
    device: str,
    event: Optional[str] = None,
    timeout: float = DEFAULT_WAIT_TIMEOUT,
) -> list[TextContent]:
    """Wait for the next lease event of a device."""
    ctx.store.get_device(device)
    event_type = LeaseEventType(event) if event else None

    result = await ctx.service.bus.wait_for(device, event_type, timeout=timeout)
    if result is None:
        return _text({"device": device, "event": None, "timeout": timeout})
    return _text({"device": device, "event": result.to_dict()})


async def handle_reconcile(ctx: AddrconfContext) -> list[TextContent]:
    """Run one reconciliation pass."""
    result = await ctx.engine.reconcile_all()
    return _text(result.to_dict())


async def handle_updater_status(ctx: AddrconfContext) -> list[TextContent]:
    """Show updater state."""
    return _text({
        "acquisition": ctx.service.status(),
        **ctx.engine.status(),
    })


async def handle_get_audit_log(
    kind: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 20
) -> list[TextContent]:
    """Get recent settings changes from the audit log."""
    records = get_recent_changes(
        kind=kind,
        operation=operation,
        limit=limit
    )

    formatted_records = []
    for r in records:
        formatted_records.append({
            "timestamp": r.timestamp,
            "kind": r.kind,
            "operation": r.operation,
            "success": r.success,
            "seqno": r.seqno,
            "device": r.device,
            "source": r.source,
            "error": r.error,
        })

    return _text({
        "total_records": len(formatted_records),
        "filters": {
            "kind": kind,
            "operation": operation,
            "limit": limit,
        },
        "records": formatted_records,
    })


# === RESOURCES ===

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    ctx = get_context()
    resources = []

    for name in ctx.store.get_device_names():
        resources.append(Resource(
            uri=AnyUrl(f"addrconf://{name}/leases"),
            name=f"{name} Leases",
            description=f"Active leases of {name}",
            mimeType="application/json",
        ))

    return resources


@server.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource."""
    # Parse URI: addrconf://device/leases
    uri_str = str(uri)
    if uri_str.startswith("addrconf://"):
        parts = uri_str[11:].split("/")
        if len(parts) >= 2 and parts[1] == "leases":
            result = await handle_get_leases(get_context(), parts[0])
            return result[0].text

    return json.dumps({"error": f"Unknown resource: {uri}"})


def main():
    """Run the MCP server."""

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
