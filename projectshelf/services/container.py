from dataclasses import dataclass

from fastapi import Request

from projectshelf.database import Database
from projectshelf.services.aggregate_counter import AggregateCounter
from projectshelf.services.event_store import EventStore
from projectshelf.services.lookups import SqlProjectLookup, SqlUserLookup
from projectshelf.services.query_engine import QueryEngine
from projectshelf.services.recording_service import RecordingService
from projectshelf.services.sample_data import SampleDataService


@dataclass
class AnalyticsServices:
    event_store: EventStore
    aggregate_counter: AggregateCounter
    query_engine: QueryEngine
    recording: RecordingService
    sample_data: SampleDataService


def build_analytics_services(database: Database, reference_timezone: str) -> AnalyticsServices:
    session_factory = database.session_factory
    project_lookup = SqlProjectLookup(session_factory)
    user_lookup = SqlUserLookup(session_factory)

    event_store = EventStore(session_factory, project_lookup, user_lookup)
    aggregate_counter = AggregateCounter(session_factory, reference_timezone)
    query_engine = QueryEngine(event_store, aggregate_counter)

    return AnalyticsServices(
        event_store=event_store,
        aggregate_counter=aggregate_counter,
        query_engine=query_engine,
        recording=RecordingService(event_store, aggregate_counter, project_lookup, user_lookup),
        sample_data=SampleDataService(session_factory, event_store, aggregate_counter, query_engine),
    )


def get_analytics_services(request: Request) -> AnalyticsServices:
    return request.app.state.analytics
