import argparse
import asyncio
import json
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from config import YamlConfig
from coordinator import SessionCoordinator
from db import (
    AsyncExerciseHistoryRepository,
    AsyncTrainingCompletionRepository,
    AsyncTrainingProgressRepository,
    CustomExerciseRepository,
    ExerciseDefaultsRepository,
    ExerciseHistoryRepository,
    StorageRepository,
    TrainingCompletionRepository,
    TrainingProgressRepository,
    UserExerciseDataRepository,
)
from logger import setup_logger
from models import ExerciseDefaults, SetData
from recommendation_service import RecommendationService
from session_service import (
    ExerciseStatus,
    InvalidInputError,
    SessionPhase,
    TrainingSession,
    parse_repeats,
    parse_rest_time,
    parse_weight,
)
from settings_schema import SettingsSchema
from stats_service import StatisticsService
from sync_service import SyncService


@dataclass
class Services:
    settings: SettingsSchema
    storage: StorageRepository
    history: ExerciseHistoryRepository
    defaults: ExerciseDefaultsRepository
    progress: TrainingProgressRepository
    completions: TrainingCompletionRepository
    custom: CustomExerciseRepository
    backup: UserExerciseDataRepository
    recommender: RecommendationService
    stats: StatisticsService
    sync: SyncService


def build_services(settings: SettingsSchema) -> Services:
    db_path = settings.db_path
    storage = StorageRepository(db_path)
    history = ExerciseHistoryRepository(db_path, limit=settings.history_limit)
    defaults = ExerciseDefaultsRepository(db_path)
    completions = TrainingCompletionRepository(db_path)
    backup = UserExerciseDataRepository(db_path)
    return Services(
        settings=settings,
        storage=storage,
        history=history,
        defaults=defaults,
        progress=TrainingProgressRepository(db_path),
        completions=completions,
        custom=CustomExerciseRepository(db_path),
        backup=backup,
        recommender=RecommendationService(history, defaults),
        stats=StatisticsService(history, completions),
        sync=SyncService(storage, backup, settings=settings),
    )


def build_coordinator(services: Services) -> SessionCoordinator:
    db_path = services.settings.db_path
    return SessionCoordinator(
        AsyncExerciseHistoryRepository(db_path, limit=services.settings.history_limit),
        AsyncTrainingProgressRepository(db_path),
        AsyncTrainingCompletionRepository(db_path),
        services.sync,
    )


def sync_plans(services: Services, current_version: Optional[str] = None) -> int:
    result = services.sync.fetch_new_trainings(current_version)
    for plan in result.data or []:
        print(f"{plan.version}\t{plan.name}\t{', '.join(plan.training_types())}")
    if not result.success:
        print(f"Sync failed, using local data: {result.error}")
        return 1
    return 0


def list_trainings(services: Services) -> int:
    plan = services.sync.current_plan()
    if plan is None:
        print("No training plan available, run 'sync' first")
        return 1
    available = plan.training_types()
    recommended = services.stats.next_recommended_training(available)
    print(f"Plan {plan.version} {plan.name}")
    for name in available:
        marker = " (recommended)" if name == recommended else ""
        print(f"  {name}: {len(plan.exercises_for(name))} exercises{marker}")
    return 0


def _format_sets(sets_data) -> str:
    return ", ".join(f"{s.weight or '-'}x{s.repeats or '-'}" for s in sets_data)


def show_history(services: Services, exercise: Optional[str] = None) -> int:
    if exercise is None:
        all_history = services.history.fetch_all_history()
        if not all_history:
            print("No history recorded")
        for name, entries in all_history.items():
            last = entries[0].date if entries else "-"
            print(f"{services.custom.display_title(name)}\t{len(entries)} entries\tlast {last}")
        return 0
    entries = services.history.fetch_history(exercise)
    if not entries:
        print(f"No history for {exercise}")
        return 0
    print(services.custom.display_title(exercise))
    for e in entries:
        print(f"{e.date}\t{e.completed_sets}/{e.total_sets}\trest {e.rest_time}s\t{_format_sets(e.sets_data)}")
    return 0


def parse_set(text: str) -> SetData:
    """Parse ``WEIGHTxREPS``; a weight of 0 or ``-`` is a bodyweight set."""
    weight, sep, repeats = text.lower().partition("x")
    if not sep:
        raise InvalidInputError(f"Expected WEIGHTxREPS, got {text!r}")
    reps = parse_repeats(repeats)
    if reps is None:
        raise InvalidInputError(f"Missing repeats in {text!r}")
    w = None if weight.strip() in ("", "-") else parse_weight(weight)
    return SetData(weight=w or None, repeats=reps)


def edit_sets(services: Services, exercise: str, sets: list[str]) -> int:
    sets_data = [parse_set(s) for s in sets]
    if not services.history.update_todays_entry(exercise, sets_data):
        print(f"No entry for {exercise} recorded today")
        return 1
    print(f"Updated {exercise}: {_format_sets(sets_data)}")
    return 0


def set_custom(services: Services, exercise: str, title: Optional[str], note: Optional[str]) -> int:
    services.custom.save(exercise, custom_title=title or "", custom_note=note or "")
    print(f"{services.custom.display_title(exercise)}: {services.custom.display_note(exercise)}")
    return 0


def show_backups(services: Services) -> int:
    for record in services.backup.fetch_all_records():
        print(json.dumps(record, ensure_ascii=False))
    return 0


def show_volume(services: Services, exercise: str) -> int:
    for row in services.stats.exercise_volume_history(exercise):
        print(json.dumps(row, ensure_ascii=False))
    return 0


def set_defaults(
    services: Services,
    exercise: str,
    weight: Optional[str],
    rest: Optional[str],
    repeats: Optional[str],
) -> int:
    saved = services.recommender.save_override(
        exercise,
        weight=parse_weight(weight),
        rest_time=parse_rest_time(rest),
        repeats=parse_repeats(repeats),
    )
    print(json.dumps(saved.to_json_dict(), ensure_ascii=False))
    return 0


def clear_history(services: Services) -> int:
    services.history.delete_all()
    services.progress.delete_all()
    services.defaults.delete_all()
    services.custom.delete_all()
    logger.info("Cleared exercise history, progress, defaults and custom data")
    print("All history cleared")
    return 0


def _first_time_setup(
    services: Services,
    session: TrainingSession,
    training_type: str,
    ask: Callable[[str], str],
) -> None:
    print("First training of this type: enter your starting values")
    values: dict[str, ExerciseDefaults] = {}
    for name in session.plan.exercises_for(training_type):
        spec = session.plan.trainings[training_type][name]
        suggested = services.recommender.resolve(name, spec)
        while True:
            try:
                weight = parse_weight(ask(f"{name} weight: "))
                repeats = parse_repeats(ask(f"{name} repeats [{suggested.repeats}]: "))
                rest = parse_rest_time(ask(f"{name} rest seconds [{suggested.rest_time}]: "))
                break
            except ValueError as e:
                print(e)
        values[name] = ExerciseDefaults(
            weight=weight,
            repeats=repeats or suggested.repeats,
            rest_time=rest or suggested.rest_time,
        )
    services.recommender.complete_first_time_setup(values)


def _print_status(services: Services, session: TrainingSession) -> None:
    for row in session.overview():
        pointer = ">" if row["is_current"] else " "
        extra = f" {row['time_left']}s" if row["status"] == ExerciseStatus.RESTING else ""
        print(
            f"{pointer} {row['index'] + 1}. {services.custom.display_title(row['name'])} "
            f"{row['current_set']}/{row['total_sets']} [{row['status'].value}]{extra}"
        )
    st = session.current_state()
    note = services.custom.display_note(session.current_exercise_name, session.current_spec().note)
    if note:
        print(f"  note: {note}")
    timer = st.rest_timer()
    if timer is not None:
        print(f"  resting {timer.format_time_left()}")
    print(f"  weight={st.weight} repeats={st.repeats} rest={st.custom_rest_time}")


def _update_plan(services: Services, session: TrainingSession, training_type: str) -> None:
    services.sync.fetch_new_trainings(session.plan.version)
    plan = services.sync.current_plan()
    if plan is None or plan.version == session.plan.version:
        print("Plan is up to date")
        return
    session.change_plan(plan)
    print(f"Switched to plan {plan.version}")
    if training_type in session.available_trainings():
        session.select_training(training_type)
    else:
        print(f"Training {training_type!r} is not part of the new plan")


COMMANDS_HELP = (
    "s=start set, d [weight] [reps]=done, w/r/t <value>=weight/reps/rest, "
    "k=skip rest, n=next, g <n>=go to, u=update plan, q=quit"
)


async def run_session(
    services: Services,
    training_type: str,
    ask: Callable[[str], str] = input,
) -> int:
    plan = services.sync.current_plan()
    if plan is None:
        services.sync.fetch_new_trainings()
        plan = services.sync.current_plan()
    if plan is None:
        print("No training plan available")
        return 1
    session = TrainingSession(plan, services.recommender, services.progress)
    available = session.available_trainings()
    if training_type not in available:
        print(f"Unknown training {training_type!r}, choose from {', '.join(available)}")
        return 1
    if session.is_first_time(training_type):
        _first_time_setup(services, session, training_type, ask)
    coordinator = build_coordinator(services)
    coordinator.attach(session)
    coordinator.start()
    try:
        session.select_training(training_type)
        if session.phase == SessionPhase.COMPLETE:
            print("This training is already complete for today")
            return 0
        print(COMMANDS_HELP)
        while session.phase == SessionPhase.IN_PROGRESS:
            session.refresh()
            _print_status(services, session)
            line = (await asyncio.to_thread(ask, "> ")).strip()
            if not line:
                continue
            cmd, *args = line.split()
            try:
                if cmd == "q":
                    break
                elif cmd == "s":
                    session.start_set()
                elif cmd == "d":
                    session.submit_set(*args[:2])
                    if session.current_state().completed:
                        session.next_exercise()
                elif cmd == "w" and args:
                    session.update_weight(args[0])
                elif cmd == "r" and args:
                    session.update_repeats(args[0])
                elif cmd == "t" and args:
                    session.update_rest_time(args[0])
                elif cmd == "k":
                    session.skip_rest()
                elif cmd == "n":
                    session.next_exercise()
                elif cmd == "g" and args:
                    session.go_to_exercise(int(args[0]) - 1)
                elif cmd == "u":
                    _update_plan(services, session, training_type)
                else:
                    print(COMMANDS_HELP)
            except ValueError as e:
                print(e)
        if session.phase == SessionPhase.COMPLETE:
            session.next_exercise()
        if session.show_congratulation:
            print("Training complete, well done!")
    finally:
        await coordinator.stop()
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Trainee workout session tools")
    parser.add_argument("--config", default="settings.yaml")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sync = sub.add_parser("sync")
    sync.add_argument("--version", default=None)

    sub.add_parser("trainings")
    sub.add_parser("user-id")
    sub.add_parser("clear-history")

    hist = sub.add_parser("history")
    hist.add_argument("exercise", nargs="?")

    vol = sub.add_parser("volume")
    vol.add_argument("exercise")

    dflt = sub.add_parser("set-defaults")
    dflt.add_argument("exercise")
    dflt.add_argument("--weight")
    dflt.add_argument("--rest")
    dflt.add_argument("--repeats")

    custom = sub.add_parser("set-custom")
    custom.add_argument("exercise")
    custom.add_argument("--title")
    custom.add_argument("--note")

    edit = sub.add_parser("edit-sets")
    edit.add_argument("exercise")
    edit.add_argument("sets", nargs="+", help="WEIGHTxREPS per set, e.g. 50x10")

    sub.add_parser("backups")

    run = sub.add_parser("run")
    run.add_argument("training")

    args = parser.parse_args(argv)
    settings = YamlConfig(args.config).settings()
    setup_logger(settings.log_level, settings.log_file, settings.log_json)
    services = build_services(settings)

    if args.cmd == "sync":
        return sync_plans(services, args.version)
    if args.cmd == "trainings":
        return list_trainings(services)
    if args.cmd == "user-id":
        print(services.sync.get_user_id())
        return 0
    if args.cmd == "clear-history":
        return clear_history(services)
    if args.cmd == "history":
        return show_history(services, args.exercise)
    if args.cmd == "volume":
        return show_volume(services, args.exercise)
    if args.cmd == "set-defaults":
        return set_defaults(services, args.exercise, args.weight, args.rest, args.repeats)
    if args.cmd == "set-custom":
        return set_custom(services, args.exercise, args.title, args.note)
    if args.cmd == "edit-sets":
        try:
            return edit_sets(services, args.exercise, args.sets)
        except ValueError as e:
            print(e)
            return 1
    if args.cmd == "backups":
        return show_backups(services)
    if args.cmd == "run":
        return asyncio.run(run_session(services, args.training))
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
