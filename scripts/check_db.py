#!/usr/bin/env python
"""Quick script to verify database contents."""

import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from db.database import SessionLocal
from db.models import LocationStatModel, RawCommentModel, ScamReportModel

db = SessionLocal()

count = db.query(ScamReportModel).count()
processed = db.query(ScamReportModel).filter(ScamReportModel.is_processed == True).count()
incidents = db.query(ScamReportModel).filter(ScamReportModel.is_scam_story == True).count()
print(f"Reports: {count} total, {processed} processed, {incidents} incidents")
print(f"Comments: {db.query(RawCommentModel).count()}")

item = db.query(ScamReportModel).filter(ScamReportModel.is_scam_story == True).first()
if item:
    print(f"\nSample incident:")
    print(f"  Title: {item.title[:60]}...")
    print(f"  Type: {item.scam_type}")
    print(f"  Location: {item.city or '-'}, {item.country}")
    print(f"  Coordinates: {item.latitude}, {item.longitude}")

top = db.query(LocationStatModel).order_by(LocationStatModel.total_scams.desc()).limit(5).all()
print(f"\nTop locations:")
for stat in top:
    print(f"  {stat.city or '-'}, {stat.country}: {stat.total_scams}")

db.close()
