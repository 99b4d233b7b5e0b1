# ndnsrouter

An HTTP routing proxy built on aiohttp. It picks a backend for every incoming
request from the metrics its backends report, and falls back to a serverless
endpoint when no registered server is fit to take the request.

## How routing works

Every request whose path does not start with `/servers`, `/metrics` or
`/internal` is forwarded to a backend:

- About 20% of requests are sent straight to the serverless endpoint.
- Otherwise registered servers that have reported metrics are grouped by
  score: servers scoring 80 or more are preferred, then servers scoring 60 or
  more. A random server is picked from the best non-empty group. Servers
  without metrics or scoring below 60 are never picked.
- A server is skipped while it has 10 requests in flight, or if it was picked
  less than 100 ms ago.
- When no server qualifies, the request goes to the serverless endpoint.
- When the chosen server cannot be reached or does not answer within 3
  seconds, the request is retried once on the serverless endpoint. If that
  fails too, the client receives `502` with
  `{"success": false, "message": "all server requests failed"}`.
  Any HTTP reply from a backend, including error statuses, is passed back as is.

The serverless endpoint is always the first entry of `SERVERLESS_SERVERS`; the
other entries are not used. With no serverless entry configured, any request
that needs the fallback fails with `LookupError`.

Target URLs are built from a server's registered URL cut at its first colon,
with `http://` added, so register servers by bare host name: a scheme or port
in the registered URL is not carried over.

Forwarded requests carry `X-Forwarded-Host`, `X-Origin-Host`, `X-App-Name` and
`X-Request-ID` headers. Request ids look like `REQ-20250101-120000-000001`.

## Running

Install the package and start the router with:

    ndns-router

It listens on `PORT` until interrupted. Configuration is read from the
environment, and from a `.env` file in the working directory if there is one
(variables already set take precedence).

| Variable             | Required | Default | Meaning                                   |
|----------------------|----------|---------|-------------------------------------------|
| `PORT`               | yes      |         | Port to listen on                         |
| `APP_ENV`            | yes      |         | Environment name, e.g. `dev`              |
| `CLOUD_RUN_URL`      | yes      |         | Cloud Run endpoint                        |
| `LAMBDA_URL`         | yes      |         | Lambda endpoint                           |
| `SERVERLESS_SERVERS` | no       |         | Comma-separated serverless fallback hosts |
| `WEIGHT_ONPREMISE`   | no       | `70`    | On-premise routing weight (%)             |
| `WEIGHT_CLOUD_RUN`   | no       | `15`    | Cloud Run routing weight (%)              |
| `WEIGHT_LAMBDA`      | no       | `15`    | Lambda routing weight (%)                 |

The three routing weights must add up to 100, otherwise the router refuses to
start. A variable set to an empty string takes the zero value of its type.
Further settings (`PROMETHEUS_URL`, `ONPREM_SERVERS`, `HEALTH_CHECK_INTERVAL`,
`FAILOVER_ERROR_RATE` and the like) are read into `RouterConfig` as well;
durations such as `ONPREM_RETRY_DELAY` accept values like `1s`, `250ms` or
`2h45m`.

Example `.env`:

    PORT=8080
    APP_ENV=dev
    CLOUD_RUN_URL=cloudrun.example.com
    LAMBDA_URL=lambda.example.com
    SERVERLESS_SERVERS=cloudrun.example.com,lambda.example.com

## Management endpoints

| Method   | Path                        | Purpose                                       |
|----------|-----------------------------|-----------------------------------------------|
| `GET`    | `/servers/`                 | List registered servers, status and metrics   |
| `POST`   | `/servers/add`              | Register `{"serverId": ..., "url": ...}`      |
| `DELETE` | `/servers/remove?serverId=` | Remove a server                               |
| `POST`   | `/metrics/update`           | Report metrics for one server                 |
| `PUT`    | `/internal/server/optimal`  | Report metrics and scores for several servers |

Each path also matches with a trailing slash. Unknown servers named in
`/metrics/update` or `/internal/server/optimal` are registered automatically.

A `/metrics/update` body:

    {
      "app_name": "api-1",
      "server_url": "api-1.example.com",
      "cpu_usage": 35.5,
      "memory_usage": 48.0,
      "error_rate": 0.5,
      "response_time": 120.0,
      "total_requests": 1000,
      "error_requests": 5,
      "timestamp": "2025-01-01T12:00:00Z"
    }

A `/internal/server/optimal` body:

    {
      "servers": [
        {
          "serverId": "api-1",
          "metrics": {
            "cpuUsage": 35.5,
            "memoryUsage": 48.0,
            "errorRate": 0.5,
            "responseTime": 120.0,
            "score": 87.0
          }
        }
      ]
    }

The answer names the highest-scoring server of the batch:

    {"success": true, "message": "server information updated",
     "data": {"optimal_server": "api-1", "score": 87.0}}

The scores in these reports are returned in the answer only; the metrics
stored for each server do not keep them. A server's score, which drives
selection, is whatever `Metrics.score` holds in the registry.

## Using it as a library

- `ndnsrouter.app.create_app(config)` builds the aiohttp application for a
  `RouterConfig`.
- `ndnsrouter.config.load_config(environ)` reads a `RouterConfig` from any
  mapping and raises `ConfigError` on bad input; `get_config()` caches one
  loaded from the process environment and `reset_config()` clears it.
- `ndnsrouter.services.ServerService` holds the server registry and the
  selection logic and can be used on its own.
- `ndnsrouter.proxy.proxy_middleware(server_service)` is the forwarding
  middleware; `build_target_url` shows how upstream URLs are formed.

## What it does not do

The router performs no health checks of its own: server status stays
`unknown` unless set in code, and the health-check, failover-threshold,
on-premise server list, Prometheus and routing-weight settings are read and
validated but do not affect routing. Server registrations live in memory and
are lost when the process stops.