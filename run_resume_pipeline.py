#!/usr/bin/env python3
"""
One-Page Resume command line runner

Runs one convergence loop on a LaTeX resume and a job description and writes
the resulting document.

Usage:
    python3 run_resume_pipeline.py --resume resume.tex --jd jd.txt [--out resume_fitted.tex]
        [--provider lmstudio] [--model qwen2.5-32b-instruct] [--force-condense]
"""

import argparse
import asyncio
import os
import sys
import time
from pathlib import Path

import config
from resume_pipeline import ResumeRequest, run_resume_pipeline


def print_event(event):
    kind = event.get('type')
    if kind == 'status':
        print(f"   {event['message']}")
    elif kind == 'attempt':
        print(f"\n🔄 Attempt {event['current']}/{event['max']}")
    elif kind == 'compiling':
        print("📄 Compiling LaTeX...")
    elif kind == 'error':
        print(f"❌ {event['message']}", file=sys.stderr)


def resolve_api_key(provider: str, explicit: str) -> str:
    if explicit:
        return explicit
    if provider == 'lmstudio':
        return 'lm-studio'
    env_name = 'GOOGLE_API_KEY' if provider == 'google' else 'OPENAI_API_KEY'
    return os.getenv(env_name, '')


def main():
    ap = argparse.ArgumentParser(description="Fit a LaTeX resume to one page for a job description")
    ap.add_argument("--resume", required=True, help="Path to the LaTeX resume")
    ap.add_argument("--jd", default="jd.txt", help="Path to job description file (default: jd.txt)")
    ap.add_argument("--out", default=None, help="Output .tex path (default: <resume>_fitted.tex)")
    ap.add_argument("--instructions", default="", help="Extra instructions for the rewrite")
    ap.add_argument("--provider", default="lmstudio", choices=[p['id'] for p in config.PROVIDERS],
                    help="LLM provider (default: lmstudio)")
    ap.add_argument("--model", default=None, help="Model id (default: first model of the provider)")
    ap.add_argument("--api-key", default="", help="API key (default: from the environment)")
    ap.add_argument("--force-condense", action="store_true",
                    help="Condense even when the overflow is small instead of stopping to ask")
    args = ap.parse_args()

    resume_path = Path(args.resume)
    jd_path = Path(args.jd)
    if not resume_path.exists():
        sys.exit(f"❌ ERROR: Resume file not found: {resume_path}")
    if not jd_path.exists():
        sys.exit(f"❌ ERROR: Job description file not found: {jd_path}")

    model = args.model
    if not model:
        default_model = config.get_default_model(args.provider)
        model = default_model['id'] if default_model else ''

    request = ResumeRequest(
        resume=resume_path.read_text(encoding='utf-8'),
        job_offer=jd_path.read_text(encoding='utf-8'),
        custom_instructions=args.instructions,
        api_key=resolve_api_key(args.provider, args.api_key),
        provider=args.provider,
        model=model,
        force_condense=args.force_condense,
    )

    print(f"🚀 Fitting {resume_path.name} to one page with {args.provider}/{model}")
    start_time = time.time()
    result = asyncio.run(run_resume_pipeline(request, print_event))
    elapsed = time.time() - start_time

    if result['type'] == 'error':
        sys.exit(1)
    if result['type'] == 'cancelled':
        sys.exit(f"⚠️  Cancelled after {result['attempts']} attempt(s)")

    out_path = Path(args.out) if args.out else resume_path.with_name(f"{resume_path.stem}_fitted.tex")
    out_path.write_text(result['latex'], encoding='utf-8')

    print(f"\n{'='*60}")
    if result['type'] == 'overflow_choice':
        print(f"⚠️  Small overflow (~{result['overflow_percentage']}%) after {result['attempts']} attempt(s)")
        print("   Re-run with --force-condense to let the model trim it")
    else:
        print(f"✅ Done: {result['page_count']} page(s) after {result['attempts']} attempt(s) ({elapsed:.1f}s)")
    print(result['summary'])
    print(f"📝 LaTeX written to {out_path}")
    if result.get('pdf_path'):
        print(f"📄 PDF saved to {result['pdf_path']}")


if __name__ == "__main__":
    main()
