"""Example usage of the luaref library."""

from luaref import LuaRef, LuaState

# A small configuration script evaluated inside the runtime
source = """
config = {
    name = "example",
    retries = 3,
    servers = {"alpha", "beta", "gamma"},
}

function describe(cfg)
    return cfg.name .. " (" .. #cfg.servers .. " servers)"
end
"""

with LuaState() as state:
    state.do_string(source)

    # Pin the configuration table from Python
    config = LuaRef.from_global(state, "config")
    print(f"name:    {config.get('name')}")
    print(f"retries: {config.get('retries', 0)}")
    print(f"timeout: {config.get('timeout', 30)} (default)")

    # Write a field through a deferred proxy, then read it back
    config["timeout"] = 10
    print(f"timeout: {config['timeout'].value(int)}")

    # Walk the server list with the runtime's own traversal
    servers = config.get("servers")
    print("\nServers:")
    for index, server in servers.pairs():
        print(f"  [{index}] {server}")

    # Call a runtime function with a pinned table as its argument
    describe = LuaRef.from_global(state, "describe")
    print(f"\n{describe(config)}")

    print(f"\nLive registry slots before close: {state.registry.live_count}")
