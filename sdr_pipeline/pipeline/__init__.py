"""Call pipeline: status machine, stages, orchestrator and retry manager.

Usage:
    from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator

    outcome = PipelineOrchestrator().process_transcript(session, transcript_id)
    print(outcome.status, outcome.graded_calls)

Submodules are imported explicitly; this package does not re-export them so
the repository layer can depend on the status machine without a cycle.
"""
