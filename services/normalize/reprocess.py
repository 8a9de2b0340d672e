import logging
from typing import List
from urllib.parse import quote_plus

import typer

from services.normalize import worker

app = typer.Typer(help="Re-run media normalization for raw uploads.")


@app.command()
def reprocess(
    bucket: str = typer.Argument(..., help="Bucket holding the raw uploads"),
    keys: List[str] = typer.Argument(..., help="Raw keys, e.g. wedding123/raw/abc123.heic"),
    enqueue: bool = typer.Option(
        False, "--enqueue", help="Queue the keys for the worker instead of running here"
    ),
):
    """Normalize the given keys again, overwriting their processed artifacts."""
    logging.basicConfig(
        level=worker.get_config().log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    event = {"Records": [_record(bucket, key) for key in keys]}

    if enqueue:
        job = worker.enqueue(event)
        typer.echo(f"queued {len(keys)} key(s) as job {getattr(job, 'id', 'unknown')}")
        return

    outcomes = worker.process_event(event)
    failed = False
    for outcome in outcomes:
        if outcome.skipped:
            typer.echo(f"skipped   {outcome.ref.key}")
        elif outcome.error is not None:
            failed = True
            typer.echo(f"error     {outcome.ref.key}: {outcome.error}")
        elif outcome.record is not None and outcome.record.status == "failed":
            failed = True
            typer.echo(f"failed    {outcome.ref.key}: {outcome.record.error}")
        else:
            typer.echo(f"completed {outcome.ref.key}")
    if failed:
        raise typer.Exit(code=1)


def _record(bucket: str, key: str) -> dict:
    # keys in S3 notifications are URL-encoded
    return {
        "eventName": "ObjectCreated:Put",
        "s3": {"bucket": {"name": bucket}, "object": {"key": quote_plus(key, safe="/")}},
    }


if __name__ == "__main__":
    app()
