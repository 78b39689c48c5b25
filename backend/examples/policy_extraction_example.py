#!/usr/bin/env python3
"""
Policy Field Extraction - Example Usage
=======================================

This script demonstrates how to use the multi-pass extraction pipeline
on linearized insurance documents (text or markdown).

Usage:
    python examples/policy_extraction_example.py path/to/schedule.md --family QLM
    python examples/policy_extraction_example.py a.md --compare b.md --family ALKOOT

Requirements:
    - Optional: LLM_API_KEY (or OPENAI_API_KEY) environment variable.
      Without it the table lookup engine reads values from the document's
      markdown tables.
    - Optional: FIELD_CATALOG_PATH pointing at a JSON family catalog
"""

import sys
import json
import argparse
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import Config
from app.services.policy_extraction import (
    CATALOG,
    ComparisonPipeline,
    PassController,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _read_document(path: str):
    path = Path(path)
    if not path.exists():
        logger.error(f"File not found: {path}")
        return None
    return path.read_text(encoding='utf-8')


def _save(output_path: str, data: dict):
    output_path = Path(output_path)
    with open(output_path, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info(f"Output saved to: {output_path}")


def extract_document(doc_path: str, family_name: str, output_path: str = None, extended: bool = False):
    """
    Extract a family's fields from one document.

    Args:
        doc_path: Path to the text or markdown file
        family_name: Document family to extract
        output_path: Optional path to save JSON output
        extended: Whether to include per-field metadata and the pass audit
    """
    document_text = _read_document(doc_path)
    if document_text is None:
        return None

    settings = Config.get_extraction_settings()
    family = CATALOG.get(family_name)
    controller = PassController(family, settings)

    result = controller.run(document_text, document_id=Path(doc_path).stem)
    stats = controller.get_statistics(result)

    # Print summary
    print("\n" + "=" * 60)
    print("POLICY EXTRACTION RESULTS")
    print("=" * 60)
    print(f"\nDocument ID: {result.document_id}")
    print(f"Family: {result.family}")
    print(f"Status: {result.status.value} ({result.state.value})")
    print(f"Passes Used: {result.passes_used}/{settings.max_passes}")
    print(f"Processing Time: {result.total_processing_time_ms}ms")

    print("\n" + "-" * 40)
    print("FIELDS")
    print("-" * 40)
    for name, value in result.values.items():
        record = result.field_map[name]
        if record is None or value is None:
            indicator, detail = "✗", ""
        elif record.is_value:
            indicator, detail = "✓", f" (pass {record.origin_pass}, {record.match_tier})"
        else:
            indicator, detail = "?", f" ({record.classification.value})"
        shown = value if value is not None else "null"
        print(f"  {indicator} {name[:45]:45} {shown[:60]}{detail}")

    print("\n" + "-" * 40)
    print("STATISTICS")
    print("-" * 40)
    print(f"Fill Rate: {stats['fill_rate']:.1%}")
    print(f"Resolution Rate: {stats['resolution_rate']:.1%}")
    print(f"Re-derived Descriptions: {stats['rederived_count']}")
    print(f"Rule Discrepancies: {stats['discrepancy_count']}")

    if output_path:
        output_data = result.to_extended_dict() if extended else result.to_dict()
        output_data['statistics'] = stats
        _save(output_path, output_data)

    return result


def compare_documents(doc_path1: str, doc_path2: str, family_name: str, output_path: str = None):
    """Extract two documents concurrently and print the field comparison."""
    text1, text2 = _read_document(doc_path1), _read_document(doc_path2)
    if text1 is None or text2 is None:
        return None

    pipeline = ComparisonPipeline(CATALOG.get(family_name), Config.get_extraction_settings())
    output = pipeline.compare(text1, text2, Path(doc_path1).stem, Path(doc_path2).stem)

    print("\n" + "=" * 60)
    print("DOCUMENT COMPARISON")
    print("=" * 60)
    print(f"\n{output.side1.document_id} vs {output.side2.document_id} ({output.family})")
    for side in (output.side1, output.side2):
        if not side.succeeded:
            print(f"  ! {side.document_id} failed: {side.error}")

    symbols = {"same": "=", "different": "≠", "missing": "-"}
    for record in output.records:
        print(f"  {symbols[record.status.value]} {record.field[:40]:40} "
              f"{str(record.value1)[:25]:25} | {str(record.value2)[:25]}")

    summary = output.summary
    print(f"\nSame: {summary['same']}  Different: {summary['different']}  Missing: {summary['missing']}")

    if output_path:
        _save(output_path, output.to_dict())
    return output


def show_families():
    """Print the document family catalog."""
    print("\n" + "=" * 60)
    print("DOCUMENT FAMILIES")
    print("=" * 60)
    for family in CATALOG.families:
        print(f"\n{family.name}: {family.description}")
        for spec in family.fields:
            hint = f" [{spec.format_hint.value}]" if spec.format_hint else ""
            print(f"  • {spec.canonical_name}{hint}")
        for rule in family.rules:
            print(f"  ⚙ {rule.name}")


def main():
    parser = argparse.ArgumentParser(
        description='Policy Field Extraction Pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Extract QLM fields and print results
    python policy_extraction_example.py schedule.md --family QLM

    # Save extended output with pass audit
    python policy_extraction_example.py schedule.md -o results.json --extended

    # Compare two schedules
    python policy_extraction_example.py a.md --compare b.md --family ALKOOT

    # Show the document families
    python policy_extraction_example.py --families
        """
    )

    parser.add_argument(
        'doc_path',
        nargs='?',
        help='Path to text or markdown document'
    )

    parser.add_argument(
        '--family',
        default='QLM',
        help='Document family to extract (default: QLM)'
    )

    parser.add_argument(
        '--compare',
        metavar='OTHER_DOC',
        help='Second document to compare against'
    )

    parser.add_argument(
        '-o', '--output',
        help='Path to save JSON output'
    )

    parser.add_argument(
        '--extended',
        action='store_true',
        help='Include per-field metadata and pass audit in output'
    )

    parser.add_argument(
        '--families',
        action='store_true',
        help='Show the document families and exit'
    )

    args = parser.parse_args()

    if Config.FIELD_CATALOG_PATH:
        CATALOG.load_json(Config.FIELD_CATALOG_PATH)

    if args.families:
        show_families()
        return

    if not args.doc_path:
        parser.print_help()
        print("\nError: Please provide a document path or use --families")
        sys.exit(1)

    if args.compare:
        compare_documents(args.doc_path, args.compare, args.family, args.output)
    else:
        extract_document(args.doc_path, args.family, args.output, args.extended)


if __name__ == '__main__':
    main()
