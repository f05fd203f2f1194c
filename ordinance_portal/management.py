"""
Management commands for local setup and demo data
"""
import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Ordinance, Profile

DEMO_ORDINANCES = (
    {
        'municipality_name': '札幌市',
        'title': '札幌市景観条例',
        'first_line': 'この条例は、良好な景観の形成に関し必要な事項を定める。',
        'survey_group': '景観計画区域内の届出',
        'content': '景観計画区域内において建築物の新築等を行う者は、あらかじめ市長に届け出なければならない。',
        'department': '調査',
        'category': '景観',
    },
    {
        'municipality_name': '札幌市',
        'title': '札幌市屋外広告物条例',
        'first_line': 'この条例は、屋外広告物について必要な規制を行う。',
        'survey_group': '屋外広告物の許可',
        'content': '屋外広告物を表示しようとする者は、市長の許可を受けなければならない。',
        'department': '協議',
        'category': '広告',
    },
    {
        'municipality_name': '仙台市',
        'title': '仙台市開発行為等の手続に関する条例',
        'first_line': 'この条例は、開発行為等の手続に関し必要な事項を定める。',
        'survey_group': '事前協議の手続',
        'content': '開発行為を行おうとする者は、事前に市長と協議しなければならない。',
        'department': '協議',
        'category': '開発',
    },
)


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables"""
    db.create_all()
    click.echo("✅ Database tables created/verified")


@click.command('seed-demo')
@click.option('--premium-viewer', default=None, help='Username of a premium demo viewer to create')
@with_appcontext
def seed_demo_command(premium_viewer):
    """Seed demo ordinances and viewer profiles"""
    try:
        db.create_all()
        if Ordinance.query.count() == 0:
            for values in DEMO_ORDINANCES:
                db.session.add(Ordinance(**values))
            click.echo(f"✅ Seeded {len(DEMO_ORDINANCES)} ordinances")
        else:
            click.echo("ℹ️  Ordinances already present; skipping.")

        for username, plan in (('demo_free', 'free'), (premium_viewer, 'premium')):
            if not username or Profile.query.filter_by(username=username).first():
                continue
            db.session.add(Profile(username=username, plan=plan))
            click.echo(f"✅ Created {plan} viewer: {username}")

        db.session.commit()
    except Exception as e:
        db.session.rollback()
        click.echo(f'❌ Error seeding demo data: {str(e)}')
        raise


def register_commands(app):
    """Register CLI commands"""
    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_demo_command)
