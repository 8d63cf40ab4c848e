"""Command-line entry point for the story weaving pipeline."""
import os
import sys
import json
import yaml
import time
import logging
import argparse
from datetime import datetime

from utils.llm_client import LLMClient
from utils.text_utils import read_text_file
from utils.validation import merge_config, validate_config, validate_story_input
from weaver.errors import ConfigError, ValidationError
from weaver.personas import age_bands, list_personas, persona_keys
from weaver.pipeline_runner import StoryInput, StoryPipeline, cache_key


PLACEHOLDER_API_KEYS = {
    "sk-xxxxx",
    "your-llm-api-key",
    "your-llm-api-key-here",
}


def setup_logging(config):
    """Setup logging configuration."""
    log_dir = config['paths']['log_dir']
    os.makedirs(log_dir, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = os.path.join(log_dir, f'weaver_{timestamp}.log')

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return log_file


def load_config(config_file='config.yaml'):
    """Load configuration from YAML file and merge it over the defaults."""
    if not os.path.exists(config_file):
        return merge_config()

    with open(config_file, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {config_file}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping")
    return merge_config(data)


def print_banner():
    print("=" * 60)
    print("    Story Weaver")
    print("    Linear Text to Branching Narrative")
    print("=" * 60)
    print()


def print_personas():
    for persona in list_personas():
        print(f"{persona['key']:<12} {persona['name']}")
        print(f"{'':<12} {persona['archetype']}; {persona['target_audience']}")


def print_report(result, output_file, start_time):
    """Print processing report."""
    stats = result['stats']
    metadata = result['metadata']
    elapsed = time.time() - start_time
    minutes = int(elapsed // 60)
    seconds = elapsed % 60

    print("\n")
    print("=" * 60)
    print("    Processing Report")
    print("=" * 60)
    print()
    print(f"Title: {result['title']}" + (f" by {result['author']}" if result['author'] else ""))
    print(f"Age band: {result['targetAge']}, persona: {result['persona']}")
    print()
    print(f"Chunks: {stats['chunks']}")
    print(f"Decision points: {stats['decision_points']}")
    print(f"Scenes: {metadata['totalScenes']}")
    print(f"Choices: {metadata['totalChoices']}")
    print(f"Convergence points: {metadata['convergencePoints']}")
    print(f"Max branch depth: {metadata['maxBranchDepth']}")
    print()

    print("LLM call stats:")
    llm_stats = LLMClient.get_global_stats()
    if llm_stats:
        for model, model_stats in llm_stats.items():
            print(f"  model {model}: {model_stats['calls']} calls, "
                  f"{model_stats['tokens']:,} tokens")
    else:
        print("  no calls")
    print(f"  template fallbacks: {stats['generator_fallbacks']}")

    print()
    if result['warnings']:
        print(f"Warnings: {len(result['warnings'])}")
        for warning in result['warnings']:
            print(f"  - [{warning['stage']}] {warning['message']}")
    else:
        print("Warnings: none")

    print()
    print(f"Output: {output_file}")
    print(f"Elapsed: {minutes}m {seconds:.1f}s")
    print("=" * 60)
    print()


def _is_placeholder_api_key(api_key):
    if not api_key:
        return True

    key = str(api_key).strip()
    if key in PLACEHOLDER_API_KEYS:
        return True

    lowered = key.lower()
    return lowered.startswith("your-") or "replace" in lowered


def _is_local_base_url(base_url):
    if not base_url:
        return False

    url = str(base_url).lower()
    return "localhost" in url or "127.0.0.1" in url


def validate_runtime(config, args):
    """Validate config plus the inputs only known at the command line."""
    validate_config(config)

    llm = config['llm']
    if llm.get('enabled') and not _is_local_base_url(llm.get('base_url')) \
            and _is_placeholder_api_key(llm.get('api_key')):
        raise ConfigError(
            f"llm.api_key is placeholder or empty. "
            f"Update {args.config} or set llm.enabled to false."
        )

    if args.input:
        config['paths']['input_file'] = args.input

    input_file = config['paths'].get('input_file')
    if not input_file or not os.path.exists(input_file):
        raise FileNotFoundError(
            f"Input file not found: {input_file}. "
            "Pass --input <file> or update paths.input_file in config."
        )


def _progress_logger(logger):
    def on_progress(event):
        counts = ", ".join(f"{k}={v}" for k, v in event.counts.items())
        logger.info(f"[{event.step}/5] {event.stage} {event.status}" + (f" ({counts})" if counts else ""))
    return on_progress


def main():
    """Main pipeline execution."""
    parser = argparse.ArgumentParser(description='Story Weaver: turn a linear story into a branching one')
    parser.add_argument('--input', help='Input story file path')
    parser.add_argument('--title', help='Story title (defaults to the file name)')
    parser.add_argument('--author', default='', help='Story author')
    parser.add_argument('--age', default='8-10', help='Target age band')
    parser.add_argument('--persona', default='', help='Narrative persona (empty: recommend one)')
    parser.add_argument('--genre', default='', help='Story genre, used to recommend a persona')
    parser.add_argument('--config', default='config.yaml', help='Config file path')
    parser.add_argument('--force', action='store_true', help='Recompute even if a cached result exists')
    parser.add_argument('--list-personas', action='store_true', help='List personas and exit')

    args = parser.parse_args()

    if args.list_personas:
        print_personas()
        return

    try:
        config = load_config(args.config)
        validate_runtime(config, args)
    except (ConfigError, FileNotFoundError) as e:
        # Logging is not set up yet; log_dir comes from the config.
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    log_file = setup_logging(config)
    logger = logging.getLogger(__name__)
    LLMClient.reset_global_stats()

    print_banner()

    logger.info(f"Logging to: {log_file}")
    logger.info(f"Config loaded from: {args.config}")
    logger.info(f"Input file resolved to: {config['paths']['input_file']}")

    start_time = time.time()
    input_file = config['paths']['input_file']
    title = args.title or os.path.splitext(os.path.basename(input_file))[0]

    try:
        story_input = StoryInput(
            text=read_text_file(input_file),
            title=title,
            author=args.author,
            target_age=args.age,
            persona=args.persona,
            genre=args.genre,
        )
        validate_story_input(story_input, age_bands(), persona_keys())

        pipeline = StoryPipeline(config, on_progress=_progress_logger(logger))
        key = cache_key(story_input, pipeline.resolve_persona(story_input), pipeline.config)

        output_dir = config['paths']['output_dir']
        os.makedirs(output_dir, exist_ok=True)
        output_file = os.path.join(output_dir, f"{key}.json")

        if os.path.exists(output_file) and not args.force:
            logger.info(f"Result already exists, skipping: {output_file}")
            with open(output_file, 'r', encoding='utf-8') as f:
                result = json.load(f)
        else:
            result = pipeline.run(story_input).to_dict()
            with open(output_file, 'w', encoding='utf-8') as f:
                json.dump(result, f, ensure_ascii=False, indent=2)
            logger.info(f"Story saved to: {output_file}")

        print_report(result, output_file, start_time)
        logger.info("Pipeline completed successfully!")

    except ValidationError as e:
        logger.error(f"Invalid story input: {e}")
        sys.exit(2)

    except KeyboardInterrupt:
        logger.warning("\nPipeline interrupted by user")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Pipeline failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
