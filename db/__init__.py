from .models import Base, ExecutionRecord, ScheduledPayment  # noqa: F401
from .db import (
    get_engine,
    get_session,
    create_all,
    insert_schedule,
    get_schedule,
    list_schedules,
    compare_and_set,
    overwrite_schedule,
    find_stuck,
    find_due,
    count_by_status,
    count_active_due,
    insert_execution_record,
    get_execution_record,
    list_execution_records,
    dispose_engine,
)  # noqa: F401
