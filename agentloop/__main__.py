import asyncio
import logging
from argparse import ArgumentParser

from agentloop.agent import AgentCore
from agentloop.config import load_config
from agentloop.events import LoggingEventSink, TracerEventSink
from agentloop.tracer import Tracer, YAMLExporter

logger = logging.getLogger(__name__)


async def run(config_path: str, verbosity: int, task: str, trace_dir: str | None = None) -> int:
    httpx_logger = logging.getLogger('httpx')
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
        httpx_logger.setLevel(logging.WARNING)
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level)

    # Activated before the chat model is built so its callbacks find the tracer.
    tracer = Tracer(exporter=YAMLExporter(output_dir=trace_dir)) if trace_dir else None
    tracer_token = tracer.activate() if tracer is not None else None
    try:
        config = load_config(config_path)
        sinks = [LoggingEventSink()] + ([TracerEventSink()] if tracer is not None else [])
        agent = AgentCore.from_config(config, event_sinks=sinks)
        final = await agent.run(task)
    finally:
        if tracer is not None:
            tracer.deactivate(tracer_token)

    if final.succeeded:
        print(final.answer)
        return 0
    message = final.error.message if final.error is not None else ""
    print(f"Run ended with {final.exit_reason.value}: {message}".rstrip(": "))
    if final.answer is not None:
        print(final.answer)
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = ArgumentParser('agentloop')
    parser.add_argument('--config', required=True, help="Path to the agent configuration file")
    parser.add_argument('-v', action='count', default=0, help="Verbosity level. -v for INFO, -vv for DEBUG")
    parser.add_argument('--trace-dir', help="Directory to write the run's trace to, as YAML")
    parser.add_argument('task', help="Task for the agent")
    ns = parser.parse_args(argv)
    return asyncio.run(run(ns.config, ns.v, ns.task, ns.trace_dir))


if __name__ == "__main__":
    raise SystemExit(main())
