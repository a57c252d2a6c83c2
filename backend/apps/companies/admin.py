from django.contrib import admin

from .models import Branch, Company


class BranchInline(admin.TabularInline):
    model = Branch
    extra = 0
    fields = ('code', 'name', 'branch_type', 'city', 'is_active')


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'legal_name', 'is_active', 'created_at')
    list_filter = ('is_active',)
    search_fields = ('code', 'name', 'legal_name')
    readonly_fields = ('created_at', 'updated_at')
    inlines = [BranchInline]


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'company', 'branch_type', 'is_active')
    list_filter = ('branch_type', 'is_active', 'company')
    search_fields = ('code', 'name')
    readonly_fields = ('created_at', 'updated_at')
