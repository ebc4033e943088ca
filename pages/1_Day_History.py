"""
Day History
Food cost % and sales across a restaurant's recently updated days
Reads the stored day summaries (no line items loaded)
"""

import streamlit as st
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import CALCULATION_PROFILE, PROFILE_POS_COST, RECENT_DAYS_LIMIT, THRESHOLDS
from database import init_supabase, list_active_restaurants, list_recent_days
from utils import format_currency, format_percentage, food_cost_status

st.set_page_config(page_title="Day History | Daily Food Cost", page_icon="📈", layout="wide")

st.title("📈 Day History")
st.markdown("**Recently updated days** - stored daily summaries, newest first in the table")

# Initialize Supabase
supabase = init_supabase()

# Sidebar settings
with st.sidebar:
    st.header("📈 History Settings")

    if supabase:
        st.success("✅ Connected")
    else:
        st.error("❌ Database not connected")
        st.stop()

    restaurants = list_active_restaurants(supabase)
    if not restaurants:
        st.warning("No restaurants yet. Create one in the main app first.")
        st.stop()

    names = {r['id']: r.get('name') or '' for r in restaurants}
    ids = list(names)
    current = st.session_state.get('restaurant_id')

    restaurant_id = st.selectbox(
        "Restaurant",
        options=ids,
        index=ids.index(current) if current in ids else 0,
        format_func=lambda rid: names.get(rid, rid)
    )

    st.divider()

    days_limit = st.slider("Days to show", min_value=7, max_value=90, value=RECENT_DAYS_LIMIT)

days = list_recent_days(supabase, restaurant_id, limit=days_limit)

if not days:
    st.warning(f"No saved days for {names.get(restaurant_id)} yet. Enter records in the main app first.")
    st.stop()

history_df = pd.DataFrame([{'date': day['date'], **day['summary']} for day in days])
history_df['date'] = pd.to_datetime(history_df['date'])
history_df = history_df.sort_values('date')

# =============================================================================
# OVERVIEW METRICS
# =============================================================================
total_sales = history_df['total_sales_jd'].sum()
total_cost = history_df['total_cost_jd'].sum()
sales_days = history_df[history_df['total_sales_jd'] > 0]
avg_food_cost = sales_days['food_cost_pct'].mean() if not sales_days.empty else 0

col1, col2, col3, col4 = st.columns(4)
with col1:
    st.metric("Days", len(history_df))
with col2:
    st.metric("Total Sales (JD)", format_currency(total_sales))
with col3:
    st.metric("Total Cost (JD)", format_currency(total_cost))
with col4:
    status = food_cost_status(avg_food_cost)
    st.metric(
        "Avg Food Cost (%)",
        format_percentage(avg_food_cost),
        delta=f"{'⚠️ High' if status != 'ok' else '✅ OK'}",
        delta_color="inverse" if status != 'ok' else "normal",
        help="Average over days with sales"
    )

st.divider()

# =============================================================================
# FOOD COST TREND
# =============================================================================
st.subheader("📉 Food Cost % by Day")

fig = go.Figure()
fig.add_trace(go.Scatter(
    x=history_df['date'],
    y=history_df['food_cost_pct'],
    mode='lines+markers',
    name='Food Cost %',
    hovertemplate='%{x|%Y-%m-%d}<br>Food Cost: %{y:.1f}%<extra></extra>'
))

if CALCULATION_PROFILE == PROFILE_POS_COST:
    fig.add_trace(go.Scatter(
        x=history_df['date'],
        y=history_df['recipe_food_cost_pct'],
        mode='lines+markers',
        name='Recipe Food Cost %',
        line=dict(dash='dot'),
        hovertemplate='%{x|%Y-%m-%d}<br>Recipe: %{y:.1f}%<extra></extra>'
    ))

fig.add_hline(y=THRESHOLDS['food_cost_target'], line_dash="dash", line_color="green",
              annotation_text=f"Target {THRESHOLDS['food_cost_target']}%")
fig.add_hline(y=THRESHOLDS['food_cost_critical'], line_dash="dash", line_color="red",
              annotation_text=f"Critical {THRESHOLDS['food_cost_critical']}%")

fig.update_layout(
    height=420,
    xaxis_title="Date",
    yaxis_title="Food Cost (%)",
    legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="center", x=0.5),
    plot_bgcolor='white',
    yaxis=dict(gridcolor='rgba(0,0,0,0.1)', ticksuffix='%')
)
st.plotly_chart(fig, use_container_width=True)

# =============================================================================
# SALES VS COST
# =============================================================================
st.subheader("💰 Sales vs Cost by Day")

chart_df = history_df.rename(columns={'total_sales_jd': 'Total Sales', 'total_cost_jd': 'Total Cost'})
fig = px.bar(chart_df, x='date', y=['Total Sales', 'Total Cost'], barmode='group',
             labels={'date': 'Date', 'value': 'JD', 'variable': ''})
fig.update_layout(height=380, legend=dict(orientation="h", yanchor="bottom", y=1.02))
st.plotly_chart(fig, use_container_width=True)

# =============================================================================
# DAY TABLE
# =============================================================================
st.subheader("📋 Days")

table_df = history_df.sort_values('date', ascending=False)
display_df = pd.DataFrame({
    'Date': table_df['date'].dt.strftime('%Y-%m-%d'),
    'Total Sales': table_df['total_sales_jd'].apply(format_currency),
    'Total Cost': table_df['total_cost_jd'].apply(format_currency),
    'Par Cst': table_df['par_cst_jd'].apply(format_currency),
    'Food Cost': table_df['food_cost_pct'].apply(format_percentage),
    'Status': table_df['food_cost_pct'].apply(
        lambda pct: {'ok': '✅', 'warning': '⚠️', 'critical': '🔴'}[food_cost_status(pct)]
    ),
})

if CALCULATION_PROFILE == PROFILE_POS_COST:
    display_df.insert(4, 'Cost on POS', table_df['total_cost_on_pos_jd'].apply(format_currency))
    display_df['Variance'] = table_df['variance_pct'].apply(format_percentage)

st.dataframe(display_df, hide_index=True, use_container_width=True)
