import asyncio

import numpy as np
import pytest
import torch

from fedexplain.errors import RoundCancelled, RoundInProgressError, ShapeMismatchError
from fedexplain.fl.orchestrator import RoundOrchestrator
from fedexplain.models.model_zoo import ArchitectureKind, build_model
from fedexplain.types import ParticipantStatus, RoundPhase, RoundStatus, TrainingResult
from fedexplain.utils.config import FeatureConfig, FederationSettings, Hyperparameters
from fedexplain.utils.serialization import are_compatible, get_weights

from conftest import make_records

CONFIG = FeatureConfig(feature_columns=["x1", "x2"], target_column="label")
HYPER = Hyperparameters(epochs=1, learning_rate=0.05, batch_size=8)


def _rows(n):
    return [{"x1": "0", "x2": "0", "label": "a"} for _ in range(n)]


def fake_trainer(accuracies, shapes=None, seen=None):
    """Trainer stub returning canned results without touching torch training."""

    async def _train(participant, config, seed_weights, **kwargs):
        if seen is not None:
            seen.append(seed_weights)
        await asyncio.sleep(0)
        shape = shapes[participant.participant_id] if shapes else (2, 2)
        participant.status = ParticipantStatus.COMPLETED
        return TrainingResult(
            participant_id=participant.participant_id,
            weights=[torch.full(shape, float(participant.participant_id))],
            accuracy=accuracies[participant.participant_id],
            sample_count=participant.data_size,
        )

    return _train


def blocking_trainer(started):
    """Trainer stub that spins until the round's cancel event is set."""

    async def _train(participant, config, seed_weights, cancel_event=None, **kwargs):
        started.set()
        for _ in range(10_000):
            await asyncio.sleep(0)
            if cancel_event.is_set():
                raise RoundCancelled("stopped")
        raise AssertionError("round was never cancelled")

    return _train


@pytest.mark.asyncio
async def test_round_aggregates_accuracy_by_sample_count():
    orch = RoundOrchestrator(_rows(99), CONFIG, HYPER, trainer=fake_trainer([0.8, 0.6, 0.7]))
    assert [p.data_size for p in orch.participants] == [33, 33, 33]

    outcome = await orch.start()

    assert outcome.status is RoundStatus.COMPLETED
    assert outcome.round == 1
    assert outcome.accuracy == pytest.approx(0.7)
    assert outcome.contributors == 3
    assert orch.state.round == 1
    assert orch.state.accuracy == pytest.approx(0.7)
    # weights 0, 1, 2 with equal shares
    assert torch.allclose(orch.state.weights[0], torch.full((2, 2), 1.0))
    assert orch.phase is RoundPhase.IDLE
    assert all(p.status is ParticipantStatus.IDLE for p in orch.participants)
    assert set(outcome.participant_metrics) == {"Client_Alpha", "Client_Beta", "Client_Gamma"}


@pytest.mark.asyncio
async def test_round_counter_is_monotonic_and_seed_is_broadcast():
    seen = []
    orch = RoundOrchestrator(_rows(9), CONFIG, HYPER, trainer=fake_trainer([0.5] * 3, seen=seen))

    outcomes = await orch.run_rounds(3)

    assert [o.round for o in outcomes] == [1, 2, 3]
    assert orch.state.round == 3
    # first round starts from scratch, later rounds get a private copy
    assert seen[:3] == [None, None, None]
    assert torch.allclose(seen[3][0], torch.full((2, 2), 1.0))
    seen[3][0].add_(100.0)
    assert torch.allclose(orch.state.weights[0], torch.full((2, 2), 1.0))


@pytest.mark.asyncio
async def test_shape_mismatch_leaves_state_untouched():
    orch = RoundOrchestrator(_rows(9), CONFIG, HYPER, trainer=fake_trainer([0.5] * 3))
    await orch.start()
    before = [w.clone() for w in orch.state.weights]

    orch._trainer = fake_trainer([0.9] * 3, shapes=[(2, 2), (3, 2), (2, 2)])
    with pytest.raises(ShapeMismatchError):
        await orch.start()

    assert orch.state.round == 1
    assert orch.state.accuracy == pytest.approx(0.5)
    assert all(torch.equal(a, b) for a, b in zip(before, orch.state.weights))
    assert orch.phase is RoundPhase.IDLE
    assert orch.history[-1].status is RoundStatus.FAILED


@pytest.mark.asyncio
async def test_participant_task_error_propagates():
    async def broken(participant, config, seed_weights, **kwargs):
        raise RuntimeError("boom")

    orch = RoundOrchestrator(_rows(9), CONFIG, HYPER, trainer=broken)
    with pytest.raises(RuntimeError):
        await orch.start()
    assert orch.state.round == 0
    assert orch.phase is RoundPhase.IDLE


@pytest.mark.asyncio
async def test_stop_cancels_round_without_committing():
    started = asyncio.Event()
    orch = RoundOrchestrator(_rows(9), CONFIG, HYPER, trainer=blocking_trainer(started))

    task = asyncio.create_task(orch.start())
    await started.wait()
    assert orch.is_active

    with pytest.raises(RoundInProgressError):
        await orch.start()

    orch.stop()
    outcome = await task

    assert outcome.status is RoundStatus.CANCELLED
    assert orch.state.round == 0
    assert orch.state.weights is None
    assert orch.phase is RoundPhase.IDLE
    assert all(p.status is ParticipantStatus.IDLE for p in orch.participants)


@pytest.mark.asyncio
async def test_reset_during_round():
    started = asyncio.Event()
    orch = RoundOrchestrator(_rows(9), CONFIG, HYPER, trainer=blocking_trainer(started))

    task = asyncio.create_task(orch.start())
    await started.wait()
    orch.reset(records=_rows(12))
    outcome = await task

    assert outcome.status is RoundStatus.CANCELLED
    assert orch.history == []
    assert orch.phase is RoundPhase.IDLE
    assert [p.data_size for p in orch.participants] == [4, 4, 4]

    # the next round runs normally
    orch._trainer = fake_trainer([1.0] * 3)
    assert (await orch.start()).round == 1


@pytest.mark.asyncio
async def test_subscribers_receive_participant_updates():
    orch = RoundOrchestrator(_rows(9), CONFIG, HYPER, trainer=fake_trainer([0.5] * 3))
    queue = orch.subscribe()
    await orch.start()

    statuses = []
    while not queue.empty():
        statuses.append(queue.get_nowait().status)
    assert ParticipantStatus.PREPARING in statuses
    assert statuses[-1] is ParticipantStatus.IDLE
    orch.unsubscribe(queue)


def test_global_model_before_first_round():
    orch = RoundOrchestrator(_rows(9), CONFIG, HYPER)
    with pytest.raises(ValueError):
        orch.global_model()
    assert orch.participants_snapshot()[0]["name"] == "Client_Alpha"


@pytest.mark.asyncio
async def test_real_training_round():
    records = make_records(60, seed=3)
    config = FeatureConfig(feature_columns=["x1", "x2", "noise"], target_column="label")
    settings = FederationSettings(local_epochs=2, seed=0)
    orch = RoundOrchestrator(records, config, HYPER, settings=settings)

    first = await orch.start()
    second = await orch.start()

    assert first.status is RoundStatus.COMPLETED
    assert second.round == 2
    assert 0.0 <= orch.state.accuracy <= 1.0
    assert second.update_bytes > 0
    expected = get_weights(build_model(ArchitectureKind.LOGISTIC, 3))
    assert are_compatible(orch.state.weights, expected)
    assert all(p.rounds_completed == 2 for p in orch.participants)

    model = orch.global_model()
    probs = model.predict_proba(np.zeros((4, 3), dtype=np.float32))
    assert probs.shape == (4,)


@pytest.mark.asyncio
async def test_participant_without_valid_rows_is_skipped():
    records = make_records(30, seed=1)
    for r in records[:10]:
        r["label"] = ""
    settings = FederationSettings(local_epochs=1, seed=0)
    orch = RoundOrchestrator(records, FeatureConfig(["x1", "x2"], "label"), HYPER, settings=settings)

    outcome = await orch.start()

    assert outcome.status is RoundStatus.COMPLETED
    assert outcome.contributors == 2
    assert outcome.participant_metrics["Client_Alpha"]["sample_count"] == 0.0
    assert orch.participants[0].rounds_completed == 0


@pytest.mark.asyncio
async def test_stop_between_real_training_epochs():
    config = FeatureConfig(feature_columns=["x1", "x2", "noise"], target_column="label")
    settings = FederationSettings(local_epochs=50, seed=0)
    orch = RoundOrchestrator(make_records(60, seed=3), config, HYPER, settings=settings)
    queue = orch.subscribe()

    task = asyncio.create_task(orch.start())
    while True:
        update = await queue.get()
        if update.progress > 0:
            break
    assert update.progress < 100.0
    orch.stop()
    outcome = await task

    assert outcome.status is RoundStatus.CANCELLED
    assert orch.state.round == 0
    assert orch.state.weights is None
    assert [o.status for o in orch.history] == [RoundStatus.CANCELLED]
    assert orch.phase is RoundPhase.IDLE
    assert all(p.rounds_completed == 0 for p in orch.participants)
    assert all(p.status is ParticipantStatus.IDLE for p in orch.participants)
