import logging
import sys

from BackEnd.core.clock import fmt_duration_ms
from BackEnd.core.config import setup_logging
from BackEnd.core.paths import db_path
from BackEnd.services.log_store import LogStore

def main():
    setup_logging()
    store = LogStore.bootstrap(db_path())
    try:
        snap = store.analytics()
        logging.info("Today: %s, %d questions", fmt_duration_ms(snap.today.duration_ms), snap.today.question_count)
        logging.info("Last 7 days: %s, %d questions", fmt_duration_ms(snap.week.duration_ms), snap.week.question_count)
        if snap.mock_exam.latest is not None:
            latest = snap.mock_exam.latest
            logging.info("Latest mock exam: %s (%s), %d questions in %s", latest.title, latest.study_date,
                         latest.question_count, fmt_duration_ms(latest.duration_ms))
        for item in snap.bottlenecks_week.items[:5]:
            logging.info("Slow question: %s %s (+%s over average)", item.subject_name,
                         fmt_duration_ms(item.duration_ms), fmt_duration_ms(item.over_avg_ms))
    finally:
        store.close()
    return 0

if __name__ == "__main__":
    sys.exit(main())
