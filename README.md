# chatcap

A small HTTP service built on a minimal WSGI framework, with JSON structured
logging, request middleware (request logging, error mapping, exception
recovery) and a companion tool that turns JSON log lines into readable text.

## Install

    pip install .

For running the tests:

    pip install ".[test]"
    pytest

## Running the service

    chatcap

The service listens on `0.0.0.0:3000` by default, using the standard
library's threaded WSGI server, and writes one JSON object per log line to
standard output. It answers one route:

    GET /test  ->  {"status":"ok"}

It runs until it receives SIGINT or SIGTERM, then shuts the server down,
waiting at most the shutdown timeout.

### Settings

Each setting can be given as a flag or as an environment variable; a flag
wins over the variable, and the variable over the default.

| Flag                     | Variable                    | Default        |
|--------------------------|-----------------------------|----------------|
| `--web-read-timeout`     | `SALES_WEB_READ_TIMEOUT`    | `5s`           |
| `--web-write-timeout`    | `SALES_WEB_WRITE_TIMEOUT`   | `10s`          |
| `--web-idle-timeout`     | `SALES_WEB_IDLE_TIMEOUT`    | `2m0s`         |
| `--web-shutdown-timeout` | `SALES_WEB_SHUTDOWN_TIMEOUT`| `20s`          |
| `--web-api-host`         | `SALES_WEB_API_HOST`        | `0.0.0.0:3000` |

Timeouts are durations such as `500ms`, `5s` or `1m30s`. Flags take their
value either as `--web-api-host=127.0.0.1:4000` or as the next argument.
`chatcap --help` prints the list of options with their defaults. An unknown
flag or a malformed value is logged as a start-up error and the command exits
with status 1.

## Reading the logs

Pipe the service output through the formatter:

    chatcap | chatcap-logfmt

Each JSON line becomes

    SERVICE: time: file: LEVEL: trace-id: message: key[value]: ...

Lines that are not JSON objects pass through unchanged. To show only one
service's records (the name is compared without regard to case) use
`--service`; lines that are not JSON are then dropped:

    chatcap | chatcap-logfmt --service cap

## Using the pieces in code

```python
import io
from chatcap.logger import Logger, Level, Events
from chatcap.mux import Config, web_api

log = Logger(io.StringIO(), Level.INFO, "CAP", None, Events())
app = web_api(Config(log=log))   # a WSGI application
```

- `chatcap.logger.Logger` writes JSON records with `debug`, `info`, `warn`
  and `error`; `Events` attaches a function per level that receives a
  `Record`. `new_std_logger` gives a standard-library `logging.Logger` that
  writes through it.
- `chatcap.web.App` registers handlers with `handler_func(method, group,
  path, handler, *middleware)`, `handler_func_no_mid`, `raw_handler_func`,
  `file_server` and `file_server_react`, and enables CORS with
  `enable_cors(origins)`. `App.serve(request)` dispatches a `Request` and
  returns the `ResponseWriter`; the app itself is also a WSGI callable.
  Handlers return an object with an `encode()` method, and
  `chatcap.web.respond` turns it into the HTTP response.
- `chatcap.errs` provides `ErrCode` and `AppError`; an `AppError` carries its
  own HTTP status and encodes as `{"code": ..., "message": ...}`.
- `chatcap.mid` provides the `logger`, `errors` and `panics` middleware.

## What it does not do

Despite the name, there is no chat functionality yet: no messaging, no users,
no connections kept open and no storage. The only application route is
`GET /test`, which reports that the service is up.