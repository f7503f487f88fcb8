"""Command-line entry point for training the autopilot."""

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from autopilot.config import Config
from autopilot.monitoring import setup_logging
from autopilot.training import build_orchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Online Q-learning autopilot training')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration file (default: config/default.yaml)')
    parser.add_argument('--steps', type=int, default=None,
                        help='Maximum number of training steps')
    parser.add_argument('--target-reward', type=float, default=None,
                        help='Stop early once a batch average reward exceeds this')
    parser.add_argument('--model-dir', type=str, default=None,
                        help='Directory holding saved model slots')
    parser.add_argument('--load-model', action='store_true',
                        help='Load the configured model slot before training')
    parser.add_argument('--save-model', action='store_true',
                        help='Save the model slot after training')
    parser.add_argument('--list-models', action='store_true',
                        help='List saved model slots and exit')
    parser.add_argument('--set', action='append', default=[], metavar='KEY=VALUE',
                        help='Override a config value, e.g. --set learning.learning_rate=0.01')
    parser.add_argument('--serve', action='store_true',
                        help='Serve the JSON dashboard instead of training from the CLI')
    return parser


async def run_session(orchestrator, args):
    if args.load_model:
        await orchestrator.load_model()
    outcome = await orchestrator.start_training(args.steps, args.target_reward)
    if args.save_model:
        await orchestrator.save_model()
    return outcome


def serve(orchestrator, config: Config, load_model: bool):
    from autopilot.dashboard import LoopRunner, create_app

    runner = LoopRunner()
    if load_model:
        runner.submit(orchestrator.load_model())
    app = create_app(orchestrator, runner)
    settings = config.section('dashboard')
    try:
        app.run(host=settings.get('host', '127.0.0.1'),
                port=settings.get('port', 5000),
                threaded=True)
    finally:
        runner.call(orchestrator.stop_training)
        runner.stop()


def main(argv: Optional[Sequence[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config(args.config, overrides=args.set)
    except ValueError as e:
        parser.error(str(e))
    setup_logging(config.get('logging.level', 'INFO'), config.get('logging.log_dir'))

    orchestrator = build_orchestrator(config, args.model_dir)

    if args.list_models:
        models = orchestrator.agent.store.list_models()
        print("Available models:")
        for model in models:
            print(f"  {model['slot']} ({model['created_at']})")
        return

    if args.serve:
        serve(orchestrator, config, args.load_model)
        return

    logger.info("State dim: %d, actions: %d, batch size: %d, buffer size: %d",
                orchestrator.agent.state_dim, orchestrator.agent.action_dim,
                orchestrator.agent.batch_size, orchestrator.agent.replay_buffer.capacity)

    try:
        outcome = asyncio.run(run_session(orchestrator, args))
        logger.info("Training finished: steps=%d, reached_target=%s",
                    outcome.steps, outcome.reached_target)
    except KeyboardInterrupt:
        logger.info("Training interrupted by user")
    finally:
        print(orchestrator.reporter.generate_report())


if __name__ == '__main__':
    main()
