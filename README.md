# coreresolver

A small asyncio DNS server driven by a Corefile. Each server block is a chain
of plugins. The plugins cover caching and forwarding to upstream resolvers
over UDP or DNS-over-TLS. Others log requests, consolidate errors and expose
Prometheus-style metrics. There is also a health endpoint, a `whoami`
responder, and a watcher that reloads the server when the Corefile changes.

## Installation

```
pip install .
```

To run the tests, install the `test` extra (`pytest`, `pytest-asyncio`):

```
pip install .[test]
pytest
```

## Running

```
coreresolver --config Corefile --address 0.0.0.0:53
```

Options:

- `--config` (short form `-c`) is the Corefile to load. It defaults to
  `Corefile` in the current directory.
- `--address` defaults to `0.0.0.0:53`. Only its host part is used, as the
  address to listen on.

Each server block takes its port from its name, for example `.:1053`. A
block with no port in its name listens on port 53. Every port gets both a
UDP and a TCP listener. If more than one block names the same port, only the
first of them answers queries on it.

A UDP response longer than 1232 bytes is cut to that length and gets the TC
(truncated) flag. A TCP client can then retry the query in full. TCP queries
and answers use the usual two-byte length prefix.

Log output goes to standard output and to `logs/coredns.log`. The log file
rotates at local midnight and keeps 30 old files. The environment variable
`CORERESOLVER_LOG` sets the log level: `debug`, `info`, `warning` or `error`.
The default is `info`.

## Corefile example

```
.:1053 {
    log
    errors {
        consolidate 5m ".*timeout.*" warning show_first
    }
    prometheus :9153
    health :8080
    reload 30s 15s
    cache {
        success 10000 3600
        denial 5000 1800
        servfail 5s
    }
    forward . tls://1.1.1.1 tls://1.0.0.1 {
        tls_servername cloudflare-dns.com
        policy round_robin
        max_fails 2
        health_check 500ms
        max_concurrent 1000
        expire 10s
        failover SERVFAIL REFUSED
    }
}
```

Comments start with `#`. Arguments may be put in double quotes. Several
block names may be written before one `{`, and each of them gets its own
copy of the block. A directive whose plugin name is unknown is logged and
skipped.

## Plugins

Plugins always run in a fixed order of priority. The order they are written
in the Corefile does not matter. From first to last:

1. `log`
2. `errors`
3. `whoami`
4. `reload`
5. `prometheus`
6. `cache`
7. `forward`
8. `health`
9. `dummy`

Once a plugin answers a query, the plugins after it are skipped. After that,
every plugin's post-processing step runs in reverse order. This is how the
cache stores the answers that `forward` fetched.

- `log` logs the transaction id of each incoming query.
- `errors` logs the errors reported by other plugins, such as failed
  upstream exchanges. A `consolidate DURATION PATTERN [LEVEL] [show_first]`
  line counts the errors that match the regular expression. At the end of
  each window it logs one summary line at the given level, which defaults to
  `error`. With `show_first`, the first error of a window is also logged in
  full. Errors that match no rule are logged as they come.
- `whoami` answers A and AAAA queries itself. The answer holds an address
  record with the client's own IP. An extra SRV record under `_udp` or
  `_tcp` carries the client's port.
- `reload [INTERVAL [JITTER]]` computes the SHA-512 of the Corefile again
  after each interval, give or take a random jitter. The defaults are 30s
  and 15s. The interval is at least 2s. The jitter is at least 1s and at
  most half the interval. When the hash changes, every listener and plugin
  is shut down and built again from the new file. The response cache is
  kept across reloads.
- `prometheus [[HOST]:PORT]` records request counts, sizes, durations and
  response codes. It answers `GET` requests on its port (default `:9153`)
  with the metrics in the Prometheus text exposition format. The metric
  names follow the `coredns_*` family.
- `cache` serves repeated questions from a shared least-recently-used
  store. It holds at most 50,000 positive and 50,000 negative entries.
  - `success ANY SECONDS` sets how long NOERROR answers are kept. The
    default is 3600. The first argument is not used.
  - `denial ANY SECONDS` sets how long NXDOMAIN answers are kept. The
    default is 1800. The first argument is not used.
  - `servfail SECONDS[s]` sets how long SERVFAIL answers are kept. The
    default is 5. A value of 0 turns their caching off.
- `forward` sends queries to the listed upstreams: `IP`, `IP:PORT` or
  `tls://IP[:PORT]`. The default ports are 53 for plain upstreams and 853
  for TLS ones. See the options below.
- `health [[HOST]:PORT]` answers any TCP connection on its port (default
  `:8080`) with `HTTP/1.1 200 OK` and the body `OK`.
- `dummy` does nothing.

If the port of `prometheus` or `health` is already in use, the plugin logs
this and carries on without a listener.

## Forward options

| Option | Meaning |
| --- | --- |
| `tls_servername NAME` | SNI name used for TLS connections (default: the upstream's IP) |
| `policy random\|round_robin\|sequential` | order in which healthy upstreams are tried (default `random`) |
| `failover RCODE...` | try the next upstream when one of these codes comes back |
| `next RCODE...` | keep the answer, but let later plugins continue |
| `except DOMAIN...` | do not forward names ending in these domains |
| `force_tcp` | send every query over the pooled TLS connections, not only for `tls://` upstreams |
| `failfast_all_unhealthy_upstreams` | answer SERVFAIL when every upstream is unhealthy |
| `max_fails N` | failed health probes before an upstream is marked unhealthy (default 2; 0 turns probing off) |
| `health_check DURATION` | interval between health probes (default 500ms) |
| `max_concurrent N` | answer REFUSED to queries beyond this many in flight |
| `max_idle_conns N` | pooled TLS connections kept per upstream (default 1000) |
| `expire DURATION` | lifetime of a pooled connection (default 10s) |

Response codes are written by name: `NOERROR`, `FORMERR`, `SERVFAIL`,
`NXDOMAIN`, `NOTIMP` and `REFUSED`. Any other name counts as `SERVFAIL`.
When every upstream is unhealthy and `failfast_all_unhealthy_upstreams` is
not set, all upstreams are tried anyway.

Durations take the suffixes `ms`, `s` and `m`. The `errors` and `reload`
plugins also accept `h`.

## Using it as a library

- `coreresolver.corefile.parse_corefile(text)` turns Corefile text into
  `RawZone` objects that hold `PluginConfig` directives.
- `coreresolver.config.parse_config(content, shared)` and
  `load_config(path, shared)` build a `Config` with live plugin chains. The
  `shared` argument is a `coreresolver.plugins.base.SharedState`.
- `coreresolver.server.DnsServer(config, shared)` serves a `Config`.
  - `await server.run(address)` listens until a reload is requested.
  - `await server.handle_query(raw, client_addr, protocol, port)` runs one
    wire-format query through a chain and returns the wire response.
- `coreresolver.cli.serve(config_path, address)` runs the server and
  reloads it when the Corefile changes.
- New plugins subclass `coreresolver.plugins.base.Plugin` and override
  `process`, and optionally `post_process`, `start` and `close`.

## What it does not do

- It holds no zone data of its own and is not an authoritative server.
  Answers come only from the cache, from upstreams or from `whoami`.
- The domain part of a server block's name is not used to route queries.
  A query goes to the first block bound to the port it arrived on.
- Metrics always carry the protocol label `udp`, even for TCP queries.
- The health endpoint always answers OK. It does not check the server's
  state.